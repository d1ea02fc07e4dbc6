from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from .provenance import read_sidecar
from .types import ResolvedTransform


def stable_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fingerprint_payload(resolved: ResolvedTransform) -> dict[str, Any]:
    return {
        "source_kind": resolved.source.kind,
        "source": resolved.source.identity,
        "width": resolved.width,
        "height": resolved.height,
        "format": resolved.format,
        # Keep 80 and "80" apart.
        "quality": None if resolved.quality is None else [type(resolved.quality).__name__, resolved.quality],
        "extra": resolved.extra,
    }


def compute_fingerprint(resolved: ResolvedTransform) -> str:
    return sha256_text(stable_json(fingerprint_payload(resolved)))


def check_cache(fingerprint: str, out_path: Path, source_hash: str, service_id: str) -> bool:
    """True when `out_path` was produced from these exact source bytes, options and service."""
    if not out_path.exists():
        return False
    data = read_sidecar(out_path)
    if data is None:
        return False
    return (
        data.get("fingerprint") == fingerprint
        and data.get("source_hash") == source_hash
        and data.get("service_id") == service_id
    )
