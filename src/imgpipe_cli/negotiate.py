from __future__ import annotations

import dataclasses
import logging

from .errors import InvalidQualityError, UnsupportedInputFormatError, UnsupportedOutputFormatError
from .services.base import ImageService
from .types import VECTOR_FORMAT, LocalSource, ResolvedTransform

logger = logging.getLogger(__name__)


def _is_vector_passthrough(resolved: ResolvedTransform) -> bool:
    return (
        resolved.format == VECTOR_FORMAT
        and isinstance(resolved.source, LocalSource)
        and resolved.source.metadata.is_vector
    )


def negotiate(resolved: ResolvedTransform, backend: ImageService) -> ResolvedTransform:
    """Adapt a resolved transform to what `backend` can produce.

    A source the backend cannot decode or an output format it cannot
    produce is an error, never a silent substitution.
    Quality is advisory: dropped when the backend has no notion of it for the
    format, rejected when the backend understands quality but not this value.
    """
    if _is_vector_passthrough(resolved):
        # svg in, svg out: nothing to encode, quality is meaningless.
        return dataclasses.replace(resolved, quality=None)

    source = resolved.source
    if isinstance(source, LocalSource) and source.metadata.format not in backend.supported_input_formats:
        raise UnsupportedInputFormatError(source.metadata.format, source.metadata.src)

    supported = tuple(backend.supported_output_formats)
    if resolved.format not in supported:
        raise UnsupportedOutputFormatError(resolved.format, backend.service_id, supported)

    if resolved.quality is None:
        return resolved

    if not backend.supports_quality(resolved.format):
        logger.warning(
            "%s: quality %r ignored, '%s' output has no quality setting",
            backend.service_id,
            resolved.quality,
            resolved.format,
        )
        return dataclasses.replace(resolved, quality=None)

    if not backend.is_valid_quality(resolved.quality, resolved.format):
        raise InvalidQualityError(resolved.quality, resolved.format, backend.service_id)

    return resolved
