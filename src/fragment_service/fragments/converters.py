"""Table-driven conversion of fragment data between related representations.

The dispatcher looks up the fragment's base media type and the requested
extension in ``CONVERSIONS``. Pairs that are not in the table raise
``Unsupported``; conversions that are attempted but fail on the input raise
``ConversionError``. The two are mapped to different responses by callers.
"""

import io
import json
import logging
from typing import Callable

import yaml
from markdown_it import MarkdownIt
from PIL import Image, UnidentifiedImageError

from .errors import ConversionError, Unsupported
from .interfaces import ConversionResult
from .media_types import MediaType, parse_media_type

logger = logging.getLogger(__name__)

# extension -> output content type
EXTENSION_TYPES: dict[str, str] = {
    "txt": "text/plain",
    "md": "text/markdown",
    "html": "text/html",
    "csv": "text/csv",
    "json": "application/json",
    "yaml": "application/yaml",
    "yml": "application/yaml",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "avif": "image/avif",
}

# content type -> Pillow format name
_PILLOW_FORMATS: dict[str, str] = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
    "image/avif": "AVIF",
}

# html disabled, tables and strikethrough enabled
_markdown = MarkdownIt("js-default")

Converter = Callable[[bytes, MediaType, str], bytes]


def _decode_text(data: bytes, media: MediaType) -> str:
    encoding = media.charset or "utf-8"
    try:
        return data.decode(encoding)
    except LookupError as e:
        raise ConversionError(f"unknown charset {encoding!r}") from e
    except UnicodeDecodeError as e:
        raise ConversionError(f"data is not valid {encoding} text") from e


def passthrough(data: bytes, media: MediaType, target_type: str) -> bytes:
    return data


def markdown_to_html(data: bytes, media: MediaType, target_type: str) -> bytes:
    return _markdown.render(_decode_text(data, media)).encode("utf-8")


def csv_to_json(data: bytes, media: MediaType, target_type: str) -> bytes:
    """Convert CSV to a JSON array of objects keyed by the header row.

    Parsing is deliberately naive: rows are split on commas with no support
    for quoted fields or embedded commas.
    """
    lines = _decode_text(data, media).strip().splitlines()
    if len(lines) < 2:
        raise ConversionError("CSV needs a header row and at least one data row")
    headers = [h.strip() for h in lines[0].split(",")]
    rows = [
        dict(zip(headers, (v.strip() for v in line.split(","))))
        for line in lines[1:]
    ]
    return json.dumps(rows).encode("utf-8")


def json_to_yaml(data: bytes, media: MediaType, target_type: str) -> bytes:
    try:
        obj = json.loads(_decode_text(data, media))
    except json.JSONDecodeError as e:
        raise ConversionError(f"malformed JSON: {e.msg}") from e
    return yaml.safe_dump(obj, sort_keys=False, allow_unicode=True).encode("utf-8")


def transcode_image(data: bytes, media: MediaType, target_type: str) -> bytes:
    if media.base_type == target_type:
        return data
    fmt = _PILLOW_FORMATS[target_type]
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if fmt == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format=fmt)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, KeyError) as e:
        logger.warning("image conversion %s -> %s failed: %s", media.base_type, target_type, e)
        raise ConversionError(f"cannot convert {media.base_type} to {target_type}") from e
    return out.getvalue()


_IMAGE_TARGETS: dict[str, Converter] = {
    ext: transcode_image for ext in ("png", "jpg", "jpeg", "webp", "gif", "avif")
}

CONVERSIONS: dict[str, dict[str, Converter]] = {
    "text/plain": {"txt": passthrough},
    "text/markdown": {"md": passthrough, "html": markdown_to_html, "txt": passthrough},
    "text/html": {"html": passthrough, "txt": passthrough},
    "text/csv": {"csv": passthrough, "txt": passthrough, "json": csv_to_json},
    "application/json": {
        "json": passthrough,
        "yaml": json_to_yaml,
        "yml": json_to_yaml,
        "txt": passthrough,
    },
    "application/yaml": {"yaml": passthrough, "yml": passthrough, "txt": passthrough},
}


def _targets(base: str) -> dict[str, Converter]:
    if base.startswith("image/"):
        return _IMAGE_TARGETS
    return CONVERSIONS.get(base, {})


def convert(source_type: str, data: bytes, extension: str | None) -> ConversionResult:
    """Convert ``data`` of ``source_type`` into the representation for ``extension``.

    With no extension the data and the declared type are returned unchanged.
    """
    if not extension:
        return ConversionResult(data=data, content_type=source_type)
    media = parse_media_type(source_type)
    ext = extension.lower().lstrip(".")
    converter = _targets(media.base_type).get(ext)
    if converter is None:
        raise Unsupported(f"cannot convert {media.base_type} to .{ext}")
    target_type = EXTENSION_TYPES[ext]
    if converter is passthrough and media.charset:
        target_type = f"{target_type}; charset={media.charset}"
    return ConversionResult(data=converter(data, media, target_type), content_type=target_type)


def formats_for(source_type: str) -> list[str]:
    """Return the output content types reachable from ``source_type``."""
    exts = _targets(parse_media_type(source_type).base_type)
    return sorted({EXTENSION_TYPES[ext] for ext in exts})
