from __future__ import annotations

from ..types import VALID_INPUT_FORMATS, VALID_OUTPUT_FORMATS, VECTOR_FORMAT, Quality, ResolvedTransform
from .base import ImageService


class PassthroughService(ImageService):
    """Copies source bytes through untouched. Useful where no encoder is available."""

    @property
    def service_id(self) -> str:
        return "passthrough"

    @property
    def supported_input_formats(self) -> tuple[str, ...]:
        return VALID_INPUT_FORMATS + (VECTOR_FORMAT,)

    @property
    def supported_output_formats(self) -> tuple[str, ...]:
        return VALID_OUTPUT_FORMATS

    def supports_quality(self, fmt: str) -> bool:
        return False

    def is_valid_quality(self, quality: Quality, fmt: str) -> bool:
        return False

    def transform(self, source: bytes, resolved: ResolvedTransform) -> bytes:
        return source
