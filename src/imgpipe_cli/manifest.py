from __future__ import annotations

from pathlib import Path

import yaml

from .metadata import local_source
from .schema import ImageManifest, ImageSpec
from .types import RemoteSource, TransformRequest


class ManifestError(ValueError):
    pass


def read_manifest(manifest_path: Path) -> ImageManifest:
    """Parse and validate a manifest; local `src` paths are relative to its directory."""
    try:
        data = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        raise ManifestError(f"{manifest_path}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(f"{manifest_path}: YAML root must be a mapping")
    return ImageManifest.model_validate(data)


def to_request(spec: ImageSpec, base_dir: Path) -> TransformRequest:
    if spec.is_remote:
        source = RemoteSource(spec.src)
    else:
        path = Path(spec.src)
        if not path.is_absolute():
            path = base_dir / path
        source = local_source(path)

    return TransformRequest(
        source=source,
        width=spec.width,
        height=spec.height,
        quality=spec.quality,
        format=spec.format,
        extra=dict(spec.extra),
    )

