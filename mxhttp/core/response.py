"""
The outcome of one logical request: the transport response plus an optional
terminal error, with decoders that read and cache the body once.
"""

import asyncio
import codecs
import json
import logging
import xml.etree.ElementTree as ET
from http.cookies import Morsel
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, List, Optional, Type, TypeVar, Union

import aiofiles
import aiohttp
from multidict import CIMultiDict, CIMultiDictProxy
from pydantic import BaseModel, ValidationError
from yarl import URL

from mxhttp.core.transport import READ_CHUNK_SIZE, TransportResponse
from mxhttp.exceptions import DecodeError, MxHttpError, NoCookie, StatusError, TransportError
from mxhttp.models.jsondict import JSONDict

if TYPE_CHECKING:
    from mxhttp.core.request import PreparedRequest, Request

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def content_type_charset(content_type: str) -> Optional[str]:
    """``text/html; charset=GBK`` -> ``GBK``."""
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"')
    return None


class Response:
    """
    Wraps a transport response and the terminal error of the request.

    Either ``raw`` or ``error`` (or both, when an after hook rejected a
    received response) is set. Decoders raise the terminal error instead of
    touching the body, and read the body at most once.

    Usage:
        async with await client.get(url) as resp:
            data = await resp.ensure_status_2xx().json()
    """

    def __init__(
        self,
        raw: Optional[TransportResponse] = None,
        error: Optional[MxHttpError] = None,
        request: Optional["Request"] = None,
        prepared: Optional["PreparedRequest"] = None,
    ):
        self.raw = raw
        self.error = error
        self.request = request
        self.prepared = prepared
        self._body: Optional[bytes] = None
        self._consumed = False
        self._lock = asyncio.Lock()

    # Status line and headers

    @property
    def status(self) -> int:
        return self.raw.status if self.raw is not None else 0

    @property
    def reason(self) -> str:
        return self.raw.reason if self.raw is not None else ""

    @property
    def headers(self) -> Union[CIMultiDict, CIMultiDictProxy]:
        return self.raw.headers if self.raw is not None else CIMultiDict()

    @property
    def url(self) -> Optional[URL]:
        return self.raw.url if self.raw is not None else None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300

    # Errors

    def set_error(self, error: Optional[MxHttpError]) -> "Response":
        """Replaces the terminal error."""
        self.error = error
        return self

    def raise_for_error(self) -> "Response":
        """Raises the terminal error, if any."""
        if self.error is not None:
            raise self.error
        return self

    def _check(self) -> TransportResponse:
        if self.error is not None:
            raise self.error
        if self.raw is None:
            raise TransportError("no response received", op="Response")
        return self.raw

    # Status assertions

    def ensure_status(self, code: int) -> "Response":
        """Records a StatusError unless the status is code. The body is left untouched."""
        if self.error is None and self.raw is not None and self.status != code:
            self.error = StatusError(
                f"status code {self.status} not equal to {code}",
                expected=str(code),
                actual=self.status,
            )
        return self

    def ensure_status_ok(self) -> "Response":
        return self.ensure_status(200)

    def ensure_status_2xx(self) -> "Response":
        """Records a StatusError unless the status is in [200, 300)."""
        if self.error is None and self.raw is not None and not 200 <= self.status < 300:
            self.error = StatusError(
                f"status code {self.status} not in range [200, 300)",
                expected="2xx",
                actual=self.status,
            )
        return self

    # Body

    async def _read_chunk(self, raw: TransportResponse) -> bytes:
        try:
            return await raw.stream.read(READ_CHUNK_SIZE)
        except MxHttpError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"can't read response body: {e}", op="Response.content", cause=e) from e

    def _check_unconsumed(self) -> None:
        if self._consumed:
            raise DecodeError("response body already consumed", op="Response.content")

    async def content(self) -> bytes:
        """
        Returns the whole body, reading it on first use and caching it.

        Raises:
            MxHttpError: The terminal error, or a TransportError/DecodeError
                raised while reading.
        """
        return await self._read_body(self._check())

    async def _read_body(self, raw: TransportResponse) -> bytes:
        """Reads and caches the body without looking at the terminal error."""
        async with self._lock:
            if self._body is not None:
                return self._body
            self._check_unconsumed()
            # A failed read leaves the stream unusable
            self._consumed = True
            buf = bytearray()
            try:
                while chunk := await self._read_chunk(raw):
                    buf.extend(chunk)
            finally:
                await raw.release()
            self._body = bytes(buf)
            return self._body

    async def text(self, encoding: Optional[str] = None) -> str:
        """
        Decodes the body with encoding, else the Content-Type charset, else UTF-8.

        Raises:
            DecodeError: For an unknown codec or undecodable bytes.
        """
        body = await self.content()
        name = encoding or content_type_charset(self.headers.get("Content-Type", "")) or "utf-8"
        try:
            codecs.lookup(name)
        except LookupError as e:
            raise DecodeError(f"unknown encoding '{name}'", op="Response.text", cause=e) from e
        try:
            return body.decode(name)
        except UnicodeDecodeError as e:
            raise DecodeError(f"can't decode body as {name}: {e}", op="Response.text") from e

    async def json(self, model: Optional[Type[M]] = None) -> Any:
        """
        Parses the body as JSON, optionally validating it into a pydantic model.

        The body is cached first, so it stays readable after a decode failure.

        Raises:
            DecodeError: If the body is not valid JSON or does not fit the model.
        """
        body = await self.content()
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(f"invalid JSON body: {e}", op="Response.json") from e
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"JSON body does not match {model.__name__}: {e}", op="Response.json") from e

    async def h(self) -> JSONDict:
        """Parses the body as a JSON object with typed getters."""
        data = await self.json()
        if not isinstance(data, dict):
            raise DecodeError(f"expected a JSON object, got {type(data).__name__}", op="Response.h")
        return JSONDict(data)

    async def xml(self) -> ET.Element:
        """
        Parses the body as XML and returns the root element.

        The parser is fed chunk by chunk while the bytes are mirrored into the
        cache; on a parse failure the rest of the body is still cached.

        Raises:
            DecodeError: If the body is not well-formed XML.
        """
        raw = self._check()
        parser = ET.XMLPullParser(events=("end",))
        parse_error: Optional[ET.ParseError] = None

        def feed(data: bytes) -> None:
            nonlocal parse_error
            if parse_error is not None or not data:
                return
            try:
                parser.feed(data)
            except ET.ParseError as e:
                parse_error = e

        async with self._lock:
            if self._body is not None:
                feed(self._body)
            else:
                self._check_unconsumed()
                self._consumed = True
                buf = bytearray()
                try:
                    while chunk := await self._read_chunk(raw):
                        buf.extend(chunk)
                        feed(chunk)
                finally:
                    await raw.release()
                self._body = bytes(buf)

        root: Optional[ET.Element] = None
        if parse_error is None:
            try:
                for _event, element in parser.read_events():
                    root = element
                parser.close()
            except ET.ParseError as e:
                parse_error = e
        if parse_error is not None or root is None:
            raise DecodeError(f"invalid XML body: {parse_error or 'empty document'}", op="Response.xml")
        return root

    async def save(self, path: Union[str, Path]) -> Path:
        """
        Writes the body to path with aiofiles, streaming it unless already cached.

        A streamed body is not cached, so the response cannot be decoded afterwards.
        """
        raw = self._check()
        path = Path(path)
        async with self._lock:
            async with aiofiles.open(path, "wb") as f:
                if self._body is not None:
                    await f.write(self._body)
                    return path
                self._check_unconsumed()
                self._consumed = True
                try:
                    while chunk := await self._read_chunk(raw):
                        await f.write(chunk)
                finally:
                    await raw.release()
        log.debug(f"Saved response body of {self.url} to {path}")
        return path

    # Cookies

    def cookies(self) -> List[Morsel]:
        """
        Returns the cookies set by the response.

        Raises:
            NoCookie: If the response sets none.
        """
        raw = self._check()
        cookies = list(raw.cookies.values())
        if not cookies:
            raise NoCookie("no cookies in response", op="Response.cookies")
        return cookies

    def cookie(self, name: str) -> Morsel:
        raw = self._check()
        morsel = raw.cookies.get(name)
        if morsel is None:
            raise NoCookie(f"named cookie '{name}' not present", op="Response.cookie")
        return morsel

    # Tracing

    async def verbose(self, writer: IO[str], with_body: bool = True) -> None:
        """
        Writes a curl ``-v`` style trace of the exchange to writer.

        A response that failed a status assertion is still traced.
        """
        from mxhttp.core.dump import dump_request, dump_response

        if self.raw is None:
            self._check()
        if self.prepared is not None:
            writer.write(dump_request(self.prepared, with_body))
        writer.write(await dump_response(self, with_body))

    # Lifecycle

    async def close(self) -> None:
        """Releases the connection. Cached bodies stay readable."""
        if self.raw is not None:
            await self.raw.release()

    async def __aenter__(self) -> "Response":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        if self.raw is None:
            return f"<Response [error: {self.error}]>"
        return f"<Response [{self.status}]>"
