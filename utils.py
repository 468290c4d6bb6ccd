"""Utility helpers shared across server modules."""

import mimetypes
from pathlib import Path
from urllib.parse import unquote

mimetypes.add_type("application/wasm", ".wasm")
mimetypes.add_type("text/javascript", ".js")
mimetypes.add_type("text/javascript", ".mjs")

_CHARSET_TYPES = {"application/javascript", "application/json", "image/svg+xml"}


def get_content_type(file_path: Path) -> str:
    content_type, _encoding = mimetypes.guess_type(file_path.name)
    if content_type is None:
        return "application/octet-stream"
    if content_type.startswith("text/") or content_type in _CHARSET_TYPES:
        return f"{content_type}; charset=utf-8"
    return content_type


def resolve_static_file(request_path: str, static_dir: str) -> Path | None:
    """Resolve a request path under static_dir, or None for traversal attempts."""
    decoded_relative_path = unquote(request_path).lstrip("/")
    if "\x00" in decoded_relative_path:
        return None

    static_root = Path(static_dir).resolve()
    candidate = (static_root / decoded_relative_path).resolve()

    try:
        candidate.relative_to(static_root)
    except ValueError:
        return None

    return candidate
