from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from .config import ImagesConfig
from .errors import BackendFailure, ImageError, UnreadableSourceError
from .fingerprint import check_cache
from .negotiate import negotiate
from .normalize import normalize
from .provenance import append_jsonl, bytes_sha256, file_sha256, now_utc_iso, write_asset_map, write_sidecar
from .registry import AssetRegistry
from .services.base import ImageService
from .services.registry import ServiceRegistry
from .types import ImageSource, LocalSource, RegistryEntry, RemoteSource, ResolvedTransform, TransformRequest

logger = logging.getLogger(__name__)

SourceReader = Callable[[ImageSource], bytes]

ASSET_MAP_NAME = "assets.json"


def read_local_source(source: ImageSource) -> bytes:
    if isinstance(source, RemoteSource):
        raise UnreadableSourceError(source.url, "no reader configured for remote sources")
    try:
        return Path(source.metadata.src).read_bytes()
    except OSError as e:
        raise UnreadableSourceError(source.metadata.src, str(e)) from e


@dataclass(frozen=True)
class TransformOutput:
    data: bytes
    source_hash: str


def _failed(future: Future[TransformOutput]) -> bool:
    return future.done() and (future.cancelled() or future.exception() is not None)


class TransformScheduler:
    """Runs backend transforms on a thread pool, one in flight per fingerprint.

    A failed transform is forgotten once it settles so that a later request
    for the same fingerprint issues fresh backend work.
    """

    def __init__(self, service: ImageService, reader: SourceReader, max_workers: int = 4):
        self._service = service
        self._reader = reader
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="imgpipe")
        self._lock = threading.Lock()
        self._inflight: dict[str, Future[TransformOutput]] = {}

    def submit(self, entry: RegistryEntry) -> Future[TransformOutput]:
        with self._lock:
            future = self._inflight.get(entry.fingerprint)
            if future is not None and not _failed(future):
                return future
            future = self._executor.submit(self._run, entry)
            self._inflight[entry.fingerprint] = future
        future.add_done_callback(functools.partial(self._forget_failed, entry.fingerprint))
        return future

    def _run(self, entry: RegistryEntry) -> TransformOutput:
        try:
            source = self._reader(entry.resolved.source)
        except ImageError:
            raise
        except Exception as e:
            raise UnreadableSourceError(entry.resolved.source.identity, str(e)) from e

        try:
            data = self._service.transform(source, entry.resolved)
        except Exception as e:
            raise BackendFailure(entry.fingerprint, str(e)) from e
        return TransformOutput(data=data, source_hash=bytes_sha256(source))

    def _forget_failed(self, fingerprint: str, future: Future[TransformOutput]) -> None:
        if not _failed(future):
            return
        with self._lock:
            if self._inflight.get(fingerprint) is future:
                del self._inflight[fingerprint]

    def shutdown(self, cancel: bool = False) -> None:
        self._executor.shutdown(wait=True, cancel_futures=cancel)
        with self._lock:
            self._inflight.clear()


@dataclass(frozen=True)
class ImageResult:
    src: str
    width: int
    height: int
    format: str
    fingerprint: Optional[str]
    attributes: dict[str, Any]


@dataclass
class BuildResult:
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    asset_map: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return not self.errors


class ImageBuild:
    """One build's worth of image resolution.

    Entering the context starts a fresh registry; leaving it cancels pending
    transforms and discards every registered entry.
    """

    def __init__(
        self,
        service: ImageService,
        config: Optional[ImagesConfig] = None,
        registry: Optional[AssetRegistry] = None,
        reader: Optional[SourceReader] = None,
        out_dir: Optional[Path] = None,
        force: bool = False,
    ):
        self.config = config or ImagesConfig()
        self.service = service
        self.registry = registry or AssetRegistry(base_path=self.config.base_path)
        self.out_dir = Path(out_dir) if out_dir is not None else self.config.out_dir
        self.force = force
        self._reader = reader or read_local_source
        self._scheduler: Optional[TransformScheduler] = None

    @classmethod
    def from_config(cls, config: ImagesConfig, **kwargs: Any) -> "ImageBuild":
        service = ServiceRegistry(config).get_default_service()
        return cls(service, config=config, **kwargs)

    def __enter__(self) -> "ImageBuild":
        self.registry.init()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(cancel=exc_type is not None)

    def close(self, cancel: bool = True) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(cancel=cancel)
            self._scheduler = None
        self.registry.reset()

    @property
    def scheduler(self) -> TransformScheduler:
        if self._scheduler is None:
            self._scheduler = TransformScheduler(self.service, self._reader, self.config.max_workers)
        return self._scheduler

    def resolve(self, request: TransformRequest) -> ResolvedTransform:
        resolved = normalize(request, default_format=self.config.default_format)
        return negotiate(resolved, self.service)

    def target_for(self, entry: RegistryEntry) -> Path:
        return self.out_dir / entry.output_path.lstrip("/")

    def _source_hash(self, entry: RegistryEntry) -> Optional[str]:
        source = entry.resolved.source
        if not isinstance(source, LocalSource):
            return None
        try:
            return file_sha256(Path(source.metadata.src))
        except OSError:
            return None

    def _is_cached(self, entry: RegistryEntry) -> bool:
        # Remote sources have no cheap content hash and are always re-encoded.
        if self.force:
            return False
        source_hash = self._source_hash(entry)
        if source_hash is None:
            return False
        return check_cache(entry.fingerprint, self.target_for(entry), source_hash, self.service.service_id)

    def get_image(self, request: TransformRequest) -> ImageResult:
        """Resolve `request`, reserve its output path and start the transform.

        Remote sources are passed through untouched unless `optimize_remote`
        is enabled; their declared dimensions are still validated.
        """
        resolved = self.resolve(request)
        attributes = {
            "width": resolved.width,
            "height": resolved.height,
            "loading": "lazy",
            "decoding": "async",
        }

        if isinstance(resolved.source, RemoteSource) and not self.config.optimize_remote:
            return ImageResult(
                src=resolved.source.url,
                width=resolved.width,
                height=resolved.height,
                format=resolved.format,
                fingerprint=None,
                attributes=attributes,
            )

        entry, created = self.registry.register_entry(resolved)
        if created and not self._is_cached(entry):
            self.scheduler.submit(entry)

        return ImageResult(
            src=entry.output_path,
            width=resolved.width,
            height=resolved.height,
            format=resolved.format,
            fingerprint=entry.fingerprint,
            attributes=attributes,
        )

    def write_all(self) -> BuildResult:
        """Wait for every registered transform and write its output under `out_dir`."""
        result = BuildResult()
        log_path = self.out_dir / "logs" / "images.jsonl"

        pending: dict[Future[TransformOutput], RegistryEntry] = {}
        for entry in self.registry.entries():
            if self._is_cached(entry):
                logger.debug("cache hit %s", entry.output_path)
                result.skipped.append(entry.output_path)
                continue
            pending[self.scheduler.submit(entry)] = entry

        for future in as_completed(pending):
            entry = pending[future]
            try:
                output = future.result()
            except ImageError as e:
                logger.warning("%s: %s", entry.output_path, e)
                result.errors.append((entry.output_path, str(e)))
                continue

            try:
                self._write_output(entry, output, log_path)
            except OSError as e:
                logger.warning("%s: write failed: %s", entry.output_path, e)
                result.errors.append((entry.output_path, f"write failed: {e}"))
                continue
            result.written.append(entry.output_path)

        result.asset_map = write_asset_map(self.out_dir / ASSET_MAP_NAME, self.registry.static_images())
        return result

    def _write_output(self, entry: RegistryEntry, output: TransformOutput, log_path: Path) -> None:
        target = self.target_for(entry)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(output.data)
        output_hash = bytes_sha256(output.data)[:16]
        write_sidecar(target, {
            "fingerprint": entry.fingerprint,
            "source_hash": output.source_hash,
            "service_id": self.service.service_id,
            "options": entry.resolved.options(),
            "output_hash": output_hash,
            "created_at": now_utc_iso(),
        })
        append_jsonl(log_path, {
            "event": "image_written",
            "fingerprint": entry.fingerprint,
            "output_path": entry.output_path,
            "output_hash": output_hash,
            "service_id": self.service.service_id,
            "timestamp": now_utc_iso(),
        })
        logger.info("wrote %s (%dx%d %s)", entry.output_path,
                    entry.resolved.width, entry.resolved.height, entry.resolved.format)
