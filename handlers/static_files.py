"""Static file responder: serves files under a root directory."""

from __future__ import annotations

import logging
from email.utils import formatdate, parsedate_to_datetime
from os import stat_result
from pathlib import Path

from request import HTTPRequest
from response import HTTPResponse
from utils import get_content_type, resolve_static_file

INDEX_DOCUMENT = "index.html"
ALLOWED_METHODS = "GET, HEAD"

logger = logging.getLogger(__name__)


def _not_found() -> HTTPResponse:
    return HTTPResponse(status_code=404, body="Not Found")


def _validators(file_stat: stat_result) -> dict[str, str]:
    return {
        "ETag": f'W/"{file_stat.st_mtime_ns:x}-{file_stat.st_size:x}"',
        "Last-Modified": formatdate(file_stat.st_mtime, usegmt=True),
    }


def _is_not_modified(request: HTTPRequest, file_stat: stat_result, etag: str) -> bool:
    if_none_match = request.headers.get("if-none-match")
    if if_none_match is not None:
        candidates = {token.strip() for token in if_none_match.split(",")}
        return etag in candidates or "*" in candidates

    if_modified_since = request.headers.get("if-modified-since")
    if if_modified_since is None:
        return False
    try:
        since_ts = parsedate_to_datetime(if_modified_since).timestamp()
    except (TypeError, ValueError, OverflowError):
        return False
    return int(file_stat.st_mtime) <= int(since_ts)


def _redirect_to_directory(request: HTTPRequest) -> HTTPResponse:
    location = request.path + "/"
    if request.query:
        location = f"{location}?{request.query}"
    return HTTPResponse(status_code=307, headers={"Location": location})


def _as_head_response(response: HTTPResponse) -> HTTPResponse:
    if response.file_path is not None:
        body_size = response.file_path.stat().st_size
    else:
        body_size = len(response.body)
    return HTTPResponse(
        status_code=response.status_code,
        reason_phrase=response.reason_phrase,
        headers=dict(response.headers),
        body=b"",
        content_length_override=body_size,
    )


def _serve_file(request: HTTPRequest, static_path: Path) -> HTTPResponse:
    file_stat = static_path.stat()
    headers = _validators(file_stat)
    if _is_not_modified(request, file_stat, headers["ETag"]):
        return HTTPResponse(status_code=304, headers=headers, body=b"")

    headers["Content-Type"] = get_content_type(static_path)
    return HTTPResponse(status_code=200, headers=headers, file_path=static_path)


def _lookup(request: HTTPRequest, static_dir: str) -> HTTPResponse:
    static_path = resolve_static_file(request.path, static_dir)
    if static_path is None:
        return _not_found()

    if static_path.is_dir():
        if not request.path.endswith("/"):
            return _redirect_to_directory(request)
        static_path = static_path / INDEX_DOCUMENT

    if not static_path.is_file():
        return _not_found()

    return _serve_file(request, static_path)


def serve_static(request: HTTPRequest, static_dir: str) -> HTTPResponse:
    """Serve request.path from static_dir.

    Directories are answered with their index document when the path ends
    in a slash and redirected to the slash form otherwise. Paths escaping
    the root, and paths the file system refuses to look up (name too long,
    unreadable parent directory), are reported as missing.
    """
    if request.method not in {"GET", "HEAD"}:
        return HTTPResponse(
            status_code=405,
            headers={"Allow": ALLOWED_METHODS},
            body="Method Not Allowed",
        )

    try:
        response = _lookup(request, static_dir)
    except OSError as exc:
        logger.debug("Lookup of %s failed: %s", request.path, exc)
        response = _not_found()

    if request.method == "HEAD":
        return _as_head_response(response)
    return response
