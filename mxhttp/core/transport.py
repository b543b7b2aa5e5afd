"""
Network transport backed by a pooled aiohttp session, plus transparent gzip
decoding of response bodies.
"""

import asyncio
import inspect
import logging
import ssl
import zlib
from http.cookies import SimpleCookie
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp
from aiohttp.abc import AbstractCookieJar
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from mxhttp.core.request import PreparedRequest
from mxhttp.exceptions import ConfigurationError, DecodeError, TransportError
from mxhttp.models.config import ClientConfig

log = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


class BodyStream(Protocol):
    """Anything with an aiohttp-StreamReader-like ``read``."""

    async def read(self, n: int = -1) -> bytes: ...


class EmptyStream:
    async def read(self, n: int = -1) -> bytes:
        return b""


class TransportResponse:
    """The transport-level result of one exchange: status line, headers and a body stream."""

    def __init__(
        self,
        status: int,
        headers: Any,
        url: URL,
        stream: Optional[BodyStream] = None,
        reason: str = "",
        version: str = "HTTP/1.1",
        cookies: Optional[SimpleCookie] = None,
        method: str = "GET",
        release: Optional[Callable[[], Any]] = None,
    ):
        self.status = status
        self.reason = reason
        self.headers = headers if isinstance(headers, (CIMultiDict, CIMultiDictProxy)) else CIMultiDict(headers or {})
        self.url = url
        self.stream: BodyStream = stream if stream is not None else EmptyStream()
        self.version = version
        self.cookies = cookies if cookies is not None else SimpleCookie()
        self.method = method
        self._release = release
        self._released = False

    @classmethod
    def from_aiohttp(cls, resp: aiohttp.ClientResponse) -> "TransportResponse":
        return cls(
            status=resp.status,
            reason=resp.reason or "",
            headers=resp.headers,
            url=resp.url,
            stream=resp.content,
            version=f"HTTP/{resp.version.major}.{resp.version.minor}" if resp.version else "HTTP/1.1",
            cookies=resp.cookies,
            method=resp.method,
            release=resp.release,
        )

    async def release(self) -> None:
        """Returns the connection to the pool. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        if self._release is not None:
            outcome = self._release()
            if inspect.isawaitable(outcome):
                await outcome


class GzipStream:
    """Decompresses a gzip-encoded body stream on the fly."""

    def __init__(self, source: BodyStream):
        self._source = source
        self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
        self._buffer = bytearray()
        self._received = False
        self._eof = False

    async def _fill(self) -> None:
        chunk = await self._source.read(READ_CHUNK_SIZE)
        if not chunk:
            self._eof = True
            if self._received and not self._decompressor.eof:
                raise DecodeError("unexpected end of gzip stream", op="GzipStream.read")
            return
        self._received = True
        try:
            data = self._decompressor.decompress(chunk)
            # Concatenated gzip members
            while self._decompressor.eof and self._decompressor.unused_data:
                rest = self._decompressor.unused_data
                self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
                data += self._decompressor.decompress(rest)
        except zlib.error as e:
            raise DecodeError(f"invalid gzip data: {e}", op="GzipStream.read") from e
        self._buffer.extend(data)

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            while not self._eof:
                await self._fill()
            data = bytes(self._buffer)
            self._buffer.clear()
            return data
        while not self._buffer and not self._eof:
            await self._fill()
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data


def wrap_content_encoding(resp: TransportResponse) -> TransportResponse:
    """
    Substitutes a decompressing stream for gzip-encoded, non-empty bodies so
    downstream readers only ever see decoded bytes.
    """
    encoding = resp.headers.get("Content-Encoding", "").strip().lower()
    if encoding != "gzip":
        return resp
    if resp.headers.get("Content-Length", "").strip() == "0":
        return resp
    if resp.method == "HEAD" or resp.status in (204, 304):
        return resp
    if not isinstance(resp.stream, GzipStream):
        resp.stream = GzipStream(resp.stream)
    return resp


class Transport(Protocol):
    """Performs the network exchange, independent of retry and interceptor logic."""

    def send(self, request: PreparedRequest) -> Awaitable[TransportResponse]: ...

    def close(self) -> Awaitable[None]: ...


def build_ssl_context(config: ClientConfig) -> ssl.SSLContext:
    """
    Builds the TLS configuration once, at construction time.

    Raises:
        ConfigurationError: If a certificate file cannot be loaded.
    """
    context = ssl.create_default_context()
    try:
        for pem in config.root_certs:
            context.load_verify_locations(cafile=pem)
        if config.client_cert:
            context.load_cert_chain(config.client_cert, config.client_key)
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(f"can't load certificates: {e}", op="Transport.ssl") from e
    if not config.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class AiohttpTransport:
    """
    Sends requests through a single pooled aiohttp session.

    The session is created lazily inside the running loop. All configuration
    comes from a frozen ClientConfig, so one transport can serve any number
    of concurrent requests.
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self._ssl = build_ssl_context(self.config)
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Optional[aiohttp.ClientSession]:
        return self._session

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        async with self._lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(
                    limit=self.config.max_connections,
                    limit_per_host=self.config.max_connections_per_host,
                    ttl_dns_cache=300,
                    ssl=self._ssl,
                )
                jar: AbstractCookieJar = (
                    aiohttp.CookieJar(unsafe=True) if self.config.use_cookies else aiohttp.DummyCookieJar()
                )
                self._session = aiohttp.ClientSession(
                    connector=connector,
                    cookie_jar=jar,
                    # Only gzip is decoded downstream
                    headers={"Accept-Encoding": "gzip"},
                    timeout=aiohttp.ClientTimeout(
                        total=self.config.timeout,
                        sock_connect=self.config.connect_timeout,
                    ),
                    auto_decompress=False,
                    trust_env=self.config.trust_env,
                )
                log.debug(
                    f"Created transport session (limit={self.config.max_connections}, "
                    f"verify={self.config.verify}, proxy={self.config.proxy})"
                )
        return self._session

    async def cookie_jar(self) -> AbstractCookieJar:
        session = await self._initialize_session()
        return session.cookie_jar

    async def send(self, request: PreparedRequest) -> TransportResponse:
        """
        Performs one exchange and returns as soon as the headers arrive.

        Raises:
            TransportError: For connection, TLS, DNS, timeout and protocol failures.
        """
        session = await self._initialize_session()
        try:
            resp = await session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                allow_redirects=self.config.follow_redirects,
                max_redirects=self.config.max_redirects,
                proxy=self.config.proxy,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(
                f"{request.method} {request.url}: {e or type(e).__name__}",
                op="Transport.send",
                cause=e,
            ) from e
        return TransportResponse.from_aiohttp(resp)

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
