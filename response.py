"""HTTP response model and serializer."""

from dataclasses import dataclass, field
from email.utils import formatdate
from pathlib import Path

from config import SERVER_NAME

REASON_PHRASES: dict[int, str] = {
    200: "OK",
    304: "Not Modified",
    307: "Temporary Redirect",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    413: "Payload Too Large",
    414: "URI Too Long",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    501: "Not Implemented",
    503: "Service Unavailable",
    505: "HTTP Version Not Supported",
}

# Statuses that never carry a message body, so no entity headers are implied.
BODILESS_STATUSES = frozenset({204, 304})


def is_valid_header_value(value: str) -> bool:
    """Return True when value can be written as a single header field value."""
    try:
        value.encode("iso-8859-1")
    except UnicodeEncodeError:
        return False
    return all(char == "\t" or (" " <= char and char != "\x7f") for char in value)


@dataclass(slots=True)
class PreparedResponse:
    head: bytes
    body: bytes | None = None
    file_path: Path | None = None


@dataclass(slots=True)
class HTTPResponse:
    status_code: int
    reason_phrase: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str = b""
    file_path: Path | None = None
    should_close: bool = False
    content_length_override: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if self.file_path is not None and self.body:
            raise ValueError("Response cannot set both body and file_path")

    def _find_header(self, name: str) -> str | None:
        wanted = name.lower()
        for key in self.headers:
            if key.lower() == wanted:
                return key
        return None

    def has_header(self, name: str) -> bool:
        return self._find_header(name) is not None

    def get_header(self, name: str, default: str | None = None) -> str | None:
        key = self._find_header(name)
        if key is None:
            return default
        return self.headers[key]

    def set_header(self, name: str, value: str) -> None:
        """Set a header, replacing any existing field whatever its casing."""
        existing = self._find_header(name)
        if existing is not None:
            del self.headers[existing]
        self.headers[name] = value

    def to_bytes(self) -> bytes:
        """Serialize the response into HTTP/1.1 wire format bytes."""
        prepared = prepare_response(self)
        payload = bytearray(prepared.head)
        if prepared.body is not None:
            payload.extend(prepared.body)
        elif prepared.file_path is not None:
            payload.extend(prepared.file_path.read_bytes())
        return bytes(payload)


def prepare_response(response: HTTPResponse) -> PreparedResponse:
    reason = response.reason_phrase or REASON_PHRASES.get(response.status_code, "Unknown")
    normalized_headers = dict(response.headers)
    lowered = {key.lower() for key in normalized_headers}
    if "date" not in lowered:
        normalized_headers["Date"] = formatdate(timeval=None, localtime=False, usegmt=True)
    if "server" not in lowered:
        normalized_headers["Server"] = SERVER_NAME
    bodiless = response.status_code in BODILESS_STATUSES
    if "content-type" not in lowered and not bodiless:
        normalized_headers["Content-Type"] = "text/plain; charset=utf-8"
    for key in [key for key in normalized_headers if key.lower() == "content-length"]:
        del normalized_headers[key]

    body: bytes | None = None
    file_path: Path | None = None
    if response.file_path is not None:
        file_path = response.file_path
        content_length = response.content_length_override
        if content_length is None:
            content_length = file_path.stat().st_size
    else:
        body = response.body
        content_length = response.content_length_override
        if content_length is None:
            content_length = len(body)
    if bodiless:
        body, file_path = b"", None
    else:
        normalized_headers["Content-Length"] = str(content_length)

    header_lines = [f"HTTP/1.1 {response.status_code} {reason}"]
    header_lines.extend(f"{key}: {value}" for key, value in normalized_headers.items())
    head = "\r\n".join(header_lines).encode("iso-8859-1") + b"\r\n\r\n"
    return PreparedResponse(head=head, body=body, file_path=file_path)
