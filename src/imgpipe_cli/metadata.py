from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import UnreadableSourceError
from .types import VECTOR_FORMAT, IntrinsicMetadata, LocalSource

_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$")

# Camera JPEGs carrying extra frames open as MPO.
PIL_FORMAT_ALIASES = {"mpo": "jpeg"}


def _svg_length(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    m = _LENGTH_RE.match(value)
    return float(m.group(1)) if m else None


def _read_svg(path: Path) -> tuple[int, int]:
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise UnreadableSourceError(str(path), str(e)) from e

    width = _svg_length(root.get("width"))
    height = _svg_length(root.get("height"))
    if width is None or height is None:
        view_box = (root.get("viewBox") or "").replace(",", " ").split()
        if len(view_box) == 4:
            vb_w, vb_h = float(view_box[2]), float(view_box[3])
            if width is None and height is not None and vb_h:
                width = height * vb_w / vb_h
            elif height is None and width is not None and vb_w:
                height = width * vb_h / vb_w
            else:
                width, height = width or vb_w, height or vb_h

    if not width or not height:
        raise UnreadableSourceError(str(path), "svg has no usable width/height or viewBox")
    return round(width), round(height)


def read_metadata(path: Path) -> IntrinsicMetadata:
    path = Path(path).resolve()
    if not path.is_file():
        raise UnreadableSourceError(str(path), "file not found")

    if path.suffix.lower() == ".svg":
        width, height = _read_svg(path)
        return IntrinsicMetadata(src=str(path), width=width, height=height, format=VECTOR_FORMAT)

    try:
        with Image.open(path) as img:
            width, height = img.size
            fmt = (img.format or path.suffix.lstrip(".")).lower()
    except (UnidentifiedImageError, OSError) as e:
        raise UnreadableSourceError(str(path), str(e)) from e

    fmt = PIL_FORMAT_ALIASES.get(fmt, fmt)
    return IntrinsicMetadata(src=str(path), width=width, height=height, format=fmt)


def local_source(path: Path) -> LocalSource:
    return LocalSource(read_metadata(path))
