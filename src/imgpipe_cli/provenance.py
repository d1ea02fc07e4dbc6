from __future__ import annotations

import datetime as _dt
import hashlib
import json
from pathlib import Path
from typing import Any, Optional

from .types import StaticImage


def bytes_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def now_utc_iso() -> str:
    return _dt.datetime.now(tz=_dt.timezone.utc).isoformat().replace("+00:00", "Z")


def sidecar_path(out_path: Path) -> Path:
    return out_path.with_suffix(out_path.suffix + ".json")


def write_sidecar(out_path: Path, payload: dict[str, Any]) -> Path:
    sidecar = sidecar_path(out_path)
    sidecar.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    return sidecar


def read_sidecar(out_path: Path) -> Optional[dict[str, Any]]:
    sidecar = sidecar_path(out_path)
    if not sidecar.exists():
        return None
    try:
        data = json.loads(sidecar.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def append_jsonl(log_path: Path, payload: dict[str, Any]) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def write_asset_map(path: Path, images: dict[str, StaticImage]) -> Path:
    """Dump the static asset map so downstream markup emission can read it."""
    payload = {
        out: {"path": image.path, "options": image.options}
        for out, image in sorted(images.items())
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    return path
