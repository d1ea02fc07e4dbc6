from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Optional

from PIL import Image

from ..types import VALID_INPUT_FORMATS, VECTOR_FORMAT, Quality, ResolvedTransform
from .base import ImageService

if TYPE_CHECKING:
    from ..config import PillowServiceConfig

logger = logging.getLogger(__name__)

PIL_FORMATS = {
    "png": "PNG",
    "webp": "WEBP",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "avif": "AVIF",
}

LOSSY_FORMATS = ("jpeg", "jpg", "webp", "avif")

DEFAULT_PRESETS = {"low": 25, "mid": 50, "high": 80, "max": 100}


def _pillow_can_save(pil_format: str) -> bool:
    Image.init()
    return pil_format in Image.SAVE


class PillowService(ImageService):
    def __init__(self, config: "PillowServiceConfig | None" = None):
        self._config = config
        self._presets = dict(config.quality_presets) if config is not None else dict(DEFAULT_PRESETS)
        self._outputs = tuple(fmt for fmt, pil in PIL_FORMATS.items() if _pillow_can_save(pil))

    @property
    def service_id(self) -> str:
        return "pillow"

    @property
    def supported_input_formats(self) -> tuple[str, ...]:
        # Pillow cannot rasterize svg; svg sources only pass through as svg.
        return VALID_INPUT_FORMATS

    @property
    def supported_output_formats(self) -> tuple[str, ...]:
        return self._outputs

    def supports_quality(self, fmt: str) -> bool:
        return fmt in LOSSY_FORMATS

    def is_valid_quality(self, quality: Quality, fmt: str) -> bool:
        return self._quality_value(quality) is not None

    def _quality_value(self, quality: Quality) -> Optional[int]:
        if isinstance(quality, bool):
            return None
        if isinstance(quality, int):
            return quality if 0 <= quality <= 100 else None
        if isinstance(quality, str):
            return self._presets.get(quality)
        return None

    def transform(self, source: bytes, resolved: ResolvedTransform) -> bytes:
        if resolved.format == VECTOR_FORMAT:
            return source

        with Image.open(io.BytesIO(source)) as img:
            img.load()
            out = img
            if img.size != (resolved.width, resolved.height):
                out = img.resize((resolved.width, resolved.height), Image.Resampling.LANCZOS)

            pil_format = PIL_FORMATS[resolved.format]
            if pil_format == "JPEG" and out.mode not in ("RGB", "L"):
                out = out.convert("RGB")

            save_kwargs = {}
            if resolved.quality is not None and self.supports_quality(resolved.format):
                save_kwargs["quality"] = self._quality_value(resolved.quality)

            buf = io.BytesIO()
            out.save(buf, format=pil_format, **save_kwargs)

        logger.debug(
            "pillow: %s -> %dx%d %s", resolved.source.identity, resolved.width, resolved.height, resolved.format
        )
        return buf.getvalue()
