from __future__ import annotations

import math
from typing import Any, Optional, Union

from .errors import InvalidDimensionError, MissingDimensionError, UnsupportedInputFormatError
from .types import (
    RESERVED_KEYS,
    VALID_INPUT_FORMATS,
    VECTOR_FORMAT,
    LocalSource,
    RemoteSource,
    ResolvedTransform,
    TransformRequest,
)

DEFAULT_OUTPUT_FORMAT = "webp"


def round_half_up(value: float) -> int:
    # Math.round semantics, not Python's banker's rounding.
    return int(math.floor(value + 0.5))


def coerce_dimension(name: str, value: Any) -> Optional[Union[int, float]]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidDimensionError(name, value)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError as e:
            raise InvalidDimensionError(name, value) from e
    if not isinstance(value, (int, float)):
        raise InvalidDimensionError(name, value)
    try:
        finite = math.isfinite(value)
    except OverflowError as e:
        raise InvalidDimensionError(name, value) from e
    if not finite or value <= 0:
        raise InvalidDimensionError(name, value)
    return value


def _as_int(name: str, value: Union[int, float]) -> int:
    if isinstance(value, int):
        return value
    out = round_half_up(value)
    if out < 1:
        raise InvalidDimensionError(name, value)
    return out


def _scale(value: int, num: int, den: int) -> int:
    # round(value * num / den), half up, in exact integer arithmetic.
    return max(1, (2 * value * num + den) // (2 * den))


def strip_reserved(extra: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in extra.items() if k not in RESERVED_KEYS}


def _resolve_local(
    source: LocalSource, width: Optional[Union[int, float]], height: Optional[Union[int, float]]
) -> tuple[int, int]:
    meta = source.metadata
    if meta.is_vector:
        w = width if width is not None else meta.width
        h = height if height is not None else meta.height
        return _as_int("width", w), _as_int("height", h)

    if meta.format not in VALID_INPUT_FORMATS:
        raise UnsupportedInputFormatError(meta.format, meta.src)

    iw, ih = meta.width, meta.height
    if width is not None and height is not None:
        return _as_int("width", width), _as_int("height", height)
    if width is not None:
        w = _as_int("width", width)
        return w, _scale(w, ih, iw)
    if height is not None:
        h = _as_int("height", height)
        return _scale(h, iw, ih), h
    return iw, ih


def _resolve_remote(
    source: RemoteSource, width: Optional[Union[int, float]], height: Optional[Union[int, float]]
) -> tuple[int, int]:
    if width is None:
        raise MissingDimensionError("width", source.url)
    if height is None:
        raise MissingDimensionError("height", source.url)
    return _as_int("width", width), _as_int("height", height)


def normalize(
    request: TransformRequest, default_format: str = DEFAULT_OUTPUT_FORMAT
) -> ResolvedTransform:
    """Turn a partial request into a fully specified transform.

    Local sources infer missing dimensions from their intrinsic aspect ratio,
    vector sources fall back to intrinsic values without any ratio math, and
    remote sources must declare both dimensions. Quality is never invented.
    """
    width = coerce_dimension("width", request.width)
    height = coerce_dimension("height", request.height)

    source = request.source
    if isinstance(source, LocalSource):
        w, h = _resolve_local(source, width, height)
    elif isinstance(source, RemoteSource):
        w, h = _resolve_remote(source, width, height)
    else:
        raise TypeError(f"Unknown image source kind: {type(source).__name__}")

    fmt = request.format
    if fmt is None:
        is_vector = isinstance(source, LocalSource) and source.metadata.is_vector
        # svg sources are never rasterized implicitly.
        fmt = VECTOR_FORMAT if is_vector else default_format

    return ResolvedTransform(
        source=source,
        width=w,
        height=h,
        format=fmt,
        quality=request.quality,
        extra=strip_reserved(request.extra),
    )
