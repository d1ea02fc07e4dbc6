from __future__ import annotations

import logging
import posixpath
import threading
from pathlib import PurePosixPath
from typing import Callable, Iterator, Optional
from urllib.parse import urlparse

from .errors import RegistryError
from .fingerprint import compute_fingerprint
from .types import RegistryEntry, ResolvedTransform, StaticImage

logger = logging.getLogger(__name__)

PathAssigner = Callable[[ResolvedTransform, str], str]


def _source_stem(resolved: ResolvedTransform) -> str:
    identity = resolved.source.identity
    if resolved.source.kind == "remote":
        identity = urlparse(identity).path or "image"
    stem = PurePosixPath(identity.replace("\\", "/")).stem
    return stem or "image"


HASH_PREFIX_LENGTHS = (8, 16, 32, 64)


def hashed_output_path(
    resolved: ResolvedTransform, fingerprint: str, base: str = "/_images", length: int = 8
) -> str:
    """Default path assignment: `<base>/<stem>_<hash>.<format>`."""
    filename = f"{_source_stem(resolved)}_{fingerprint[:length]}.{resolved.format}"
    return posixpath.join(base or "/", filename)


class AssetRegistry:
    """Build-scoped memo of transform fingerprint -> output path.

    Entries are created at most once per fingerprint and never overwritten.
    The check-and-insert in :meth:`register_entry` runs under a lock so
    concurrent callers asking for the same transform all get the same path.
    """

    def __init__(self, assign_path: Optional[PathAssigner] = None, base_path: str = "/_images"):
        self._assign_path = assign_path
        self._base_path = base_path
        self._lock = threading.Lock()
        self._entries: dict[str, RegistryEntry] = {}
        self._paths: dict[str, str] = {}

    def init(self) -> None:
        self.reset()

    def reset(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._paths.clear()
        if dropped:
            logger.debug("registry reset, dropped %d entries", dropped)

    def register(self, resolved: ResolvedTransform) -> str:
        entry, _ = self.register_entry(resolved)
        return entry.output_path

    def register_entry(self, resolved: ResolvedTransform) -> tuple[RegistryEntry, bool]:
        """Return the entry for `resolved` and whether this call created it."""
        fingerprint = compute_fingerprint(resolved)
        with self._lock:
            existing = self._entries.get(fingerprint)
            if existing is not None:
                logger.debug("registry hit %s -> %s", fingerprint[:12], existing.output_path)
                return existing, False

            output_path = self._free_path(resolved, fingerprint)

            entry = RegistryEntry(fingerprint=fingerprint, output_path=output_path, resolved=resolved)
            self._entries[fingerprint] = entry
            self._paths[output_path] = fingerprint

        logger.debug("registered %s -> %s", fingerprint[:12], output_path)
        return entry, True

    def _free_path(self, resolved: ResolvedTransform, fingerprint: str) -> str:
        # Caller holds the lock.
        if self._assign_path is not None:
            candidates = [self._assign_path(resolved, fingerprint)]
        else:
            candidates = [
                hashed_output_path(resolved, fingerprint, base=self._base_path, length=n)
                for n in HASH_PREFIX_LENGTHS
            ]
        for output_path in candidates:
            if output_path not in self._paths:
                return output_path
        holder = self._paths[candidates[-1]]
        raise RegistryError(
            f"Output path {candidates[-1]} already assigned to {holder[:12]}, "
            f"cannot reuse it for {fingerprint[:12]}"
        )

    def lookup(self, fingerprint: str) -> Optional[RegistryEntry]:
        with self._lock:
            return self._entries.get(fingerprint)

    def lookup_path(self, output_path: str) -> Optional[RegistryEntry]:
        with self._lock:
            fingerprint = self._paths.get(output_path)
            return self._entries.get(fingerprint) if fingerprint is not None else None

    def entries(self) -> list[RegistryEntry]:
        with self._lock:
            return list(self._entries.values())

    def static_images(self) -> dict[str, StaticImage]:
        """The static asset map: output path -> path plus resolved options."""
        return {
            entry.output_path: StaticImage(path=entry.output_path, options=entry.resolved.options())
            for entry in self.entries()
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(self.entries())

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._entries
