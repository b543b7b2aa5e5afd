"""
Renders requests and responses as HTTP/1.x traces and curl command lines.
"""

import shlex
from typing import TYPE_CHECKING

from mxhttp.core.request import PreparedRequest

if TYPE_CHECKING:
    from mxhttp.core.response import Response

STREAM_BODY_NOTICE = (
    "<!-- if you see this message it means the HTTP request body cannot be read twice, "
    "it may be a stream -->"
)

_EXCLUDED_REQUEST_HEADERS = {"host", "transfer-encoding", "trailer"}


def _request_uri(prepared: PreparedRequest) -> str:
    return prepared.url.raw_path_qs or "/"


def dump_request(prepared: PreparedRequest, with_body: bool = True) -> str:
    """Returns the request as '> ' prefixed lines, like curl -v."""
    lines = [f"> {prepared.method} {_request_uri(prepared)} HTTP/1.1"]
    if prepared.host:
        lines.append(f"> Host: {prepared.host}")
    for key, value in prepared.headers.items():
        if key.lower() not in _EXCLUDED_REQUEST_HEADERS:
            lines.append(f"> {key}: {value}")
    lines.append(">")
    out = "\r\n".join(lines) + "\r\n"

    if not with_body:
        return out
    if not prepared.replayable:
        return out + STREAM_BODY_NOTICE + "\r\n"
    if isinstance(prepared.body, bytes) and prepared.body:
        out += prepared.body.decode("utf-8", errors="replace") + "\r\n"
    return out


async def dump_response(response: "Response", with_body: bool = True) -> str:
    """
    Returns the status line and headers as '< ' prefixed lines, followed by
    the body when with_body is set. Reading the body caches it.
    """
    raw = response.raw
    if raw is None:
        return ""
    lines = [f"< {raw.version} {raw.status} {raw.reason}".rstrip()]
    for key, value in raw.headers.items():
        lines.append(f"< {key}: {value}")
    lines.append("<")
    out = "\r\n".join(lines) + "\r\n"

    if not with_body or raw.headers.get("Content-Length", "").strip() == "0":
        return out
    body = await response._read_body(raw)
    if body:
        out += body.decode("utf-8", errors="replace") + "\r\n"
    return out


def to_curl(prepared: PreparedRequest) -> str:
    """Returns a shell-quoted curl command reproducing the request."""
    parts = ["curl", "-X", prepared.method, shlex.quote(str(prepared.url))]
    for key, value in prepared.headers.items():
        parts += ["-H", shlex.quote(f"{key}: {value}")]
    if not prepared.replayable:
        # Streamed bodies are read from stdin
        parts += ["--data-binary", "@-"]
    elif isinstance(prepared.body, bytes) and prepared.body:
        parts += ["--data-binary", shlex.quote(prepared.body.decode("utf-8", errors="replace"))]
    return " ".join(parts)
