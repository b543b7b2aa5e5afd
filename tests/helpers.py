"""Test doubles shared by the mxhttp test modules."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional, Union

from aiohttp import test_utils
from yarl import URL

from mxhttp.core.request import PreparedRequest
from mxhttp.core.transport import TransportResponse
from mxhttp.exceptions import TransportError


def url_for(srv: test_utils.TestServer, path: str) -> str:
    return str(srv.make_url(path))


def json_of(body: bytes) -> Any:
    return json.loads(body.decode("utf-8"))


class BytesStream:
    """A minimal body stream over fixed bytes, optionally in fixed-size pieces."""

    def __init__(self, data: bytes, piece: Optional[int] = None):
        self._data = data
        self._piece = piece

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self._data)
        if self._piece is not None:
            n = min(n, self._piece)
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


def make_response(
    status: int = 200,
    body: bytes = b"",
    headers: Optional[dict[str, str]] = None,
    url: str = "http://example.test/",
    method: str = "GET",
    piece: Optional[int] = None,
) -> TransportResponse:
    return TransportResponse(
        status=status,
        headers=headers or {},
        url=URL(url),
        stream=BytesStream(body, piece),
        reason="OK" if status == 200 else "",
        method=method,
    )


Outcome = Union[TransportResponse, BaseException, Callable[[PreparedRequest], Any]]


class ScriptedTransport:
    """
    Plays back a list of outcomes, one per send; the last one repeats.

    Each outcome is a TransportResponse, an exception to raise, or a callable
    receiving the PreparedRequest. Request bodies are drained and recorded.
    """

    def __init__(self, *outcomes: Outcome):
        self.outcomes = list(outcomes)
        self.requests: list[PreparedRequest] = []
        self.bodies: list[bytes] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def _drain(self, body: Any) -> bytes:
        if body is None:
            return b""
        if isinstance(body, bytes):
            return body
        data = bytearray()
        try:
            async for chunk in body:
                data.extend(chunk)
        except Exception as e:
            raise TransportError(f"body stream failed: {e}", op="Transport.send", cause=e) from e
        return bytes(data)

    async def send(self, request: PreparedRequest) -> TransportResponse:
        self.requests.append(request)
        self.bodies.append(await self._drain(request.body))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(request)
        return outcome

    async def close(self) -> None:
        self.closed = True


def ok(body: bytes = b"ok", **kwargs: Any) -> Callable[[PreparedRequest], TransportResponse]:
    """An outcome producing a fresh 200 response on every call."""
    return lambda request: make_response(200, body, **kwargs)


def fails(message: str = "connection refused") -> TransportError:
    return TransportError(message, op="Transport.send")
