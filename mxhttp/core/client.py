"""
The HTTP client: runs interceptors, retries and the transport for each
request and reports every failure through the returned Response.
"""

import logging
import threading
from http.cookies import Morsel
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError
from yarl import URL

from mxhttp.core.context import Context
from mxhttp.core.hooks import AfterResponseHook, BeforeRequestHook, run_after_hooks, run_before_hooks
from mxhttp.core.request import Method, Request
from mxhttp.core.response import Response
from mxhttp.core.retry import RetryPolicy, execute_with_retry
from mxhttp.core.transport import AiohttpTransport, Transport, TransportResponse, wrap_content_encoding
from mxhttp.exceptions import (
    CancellationError,
    ConfigurationError,
    InvalidURL,
    MxHttpError,
    NoCookie,
    TransportError,
)
from mxhttp.models.config import ClientConfig

log = logging.getLogger(__name__)


class Client:
    """
    Sends requests through a shared transport.

    Configuration and interceptor chains are fixed at construction, so one
    client can be used from any number of concurrent tasks.

    Usage:
        async with Client(timeout=30, retry_max_attempts=3) as client:
            resp = await client.get("https://httpbin.org/get", query={"k": "v"})
            data = await resp.json()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        transport: Optional[Transport] = None,
        before_request: Iterable[BeforeRequestHook] = (),
        after_response: Iterable[AfterResponseHook] = (),
        **overrides: Any,
    ):
        """
        Args:
            config: Base configuration. Defaults to ClientConfig().
            transport: A custom transport; defaults to an AiohttpTransport
                built from the configuration.
            before_request: Hooks run once per request, before any attempt.
            after_response: Hooks run once on the final response.
            **overrides: ClientConfig fields that replace those of config.

        Raises:
            ConfigurationError: If an override is unknown or invalid.
        """
        base = config or ClientConfig()
        if overrides:
            try:
                base = ClientConfig.model_validate({**base.model_dump(), **overrides})
            except ValidationError as e:
                messages = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                )
                raise ConfigurationError(f"invalid client options: {messages}", op="Client", cause=e) from e
        self.config = base
        self.transport: Transport = transport if transport is not None else AiohttpTransport(base)
        self.before_request = tuple(before_request)
        self.after_response = tuple(after_response)
        self.retry_policy = RetryPolicy(
            max_attempts=base.retry_max_attempts,
            min_wait=base.retry_min_wait,
            max_wait=base.retry_max_wait,
        )
        self.default_headers = {"User-Agent": base.user_agent, **base.headers}

    async def do(self, request: Request) -> Response:
        """
        Delivers request and returns the final response.

        Never raises for request failures: the typed error is recorded in
        ``Response.error``. Task cancellation of the caller propagates.
        """
        error = await run_before_hooks(self.before_request, request)
        if error is not None:
            return Response(error=error, request=request)

        context = request.context or Context()
        policy = request.retry or self.retry_policy

        async def attempt(i: int) -> Response:
            return await self._attempt(request, context)

        def cancelled(e: CancellationError) -> Response:
            return Response(error=e, request=request)

        resp = await execute_with_retry(attempt, request, policy, context, cancelled)
        await run_after_hooks(self.after_response, resp)
        return resp

    async def _attempt(self, request: Request, context: Context) -> Response:
        try:
            prepared = request.prepare(self.default_headers)
        except MxHttpError as e:
            return Response(error=e, request=request)

        raw: Optional[TransportResponse] = None
        error: Optional[MxHttpError] = None
        multipart = prepared.multipart
        try:
            raw = await context.run(self.transport.send(prepared), discard=TransportResponse.release)
        except CancellationError:
            if multipart is not None:
                await multipart.aclose()
            raise
        except MxHttpError as e:
            error = e
        except Exception as e:
            error = TransportError(f"{type(e).__name__}: {e}", op="Transport.send", cause=e)

        if multipart is not None:
            await multipart.aclose()
            # A producer failure outranks whatever the transport reported
            if multipart.error is not None:
                if raw is not None:
                    await raw.release()
                return Response(error=multipart.error, request=request, prepared=prepared)

        if error is not None:
            return Response(error=error, request=request, prepared=prepared)
        return Response(raw=wrap_content_encoding(raw), request=request, prepared=prepared)

    async def send(self, method: Union[str, Method], url: Union[str, URL], **options: Any) -> Response:
        """Builds a request from options (see Request.new) and delivers it."""
        try:
            request = Request.new(method, url, **options)
        except MxHttpError as e:
            return Response(error=e)
        return await self.do(request)

    async def get(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.GET, url, **options)

    async def head(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.HEAD, url, **options)

    async def post(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.POST, url, **options)

    async def put(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.PUT, url, **options)

    async def patch(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.PATCH, url, **options)

    async def delete(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.DELETE, url, **options)

    async def options(self, url: Union[str, URL], **options: Any) -> Response:
        return await self.send(Method.OPTIONS, url, **options)

    # Cookie jar

    async def _cookie_jar(self, op: str):
        if not self.config.use_cookies:
            raise ConfigurationError("cookie jar is disabled", op=op)
        cookie_jar = getattr(self.transport, "cookie_jar", None)
        if cookie_jar is None:
            raise ConfigurationError(f"{type(self.transport).__name__} has no cookie jar", op=op)
        return await cookie_jar()

    @staticmethod
    def _parse_url(url: Union[str, URL], op: str) -> URL:
        try:
            return Request(Method.GET, url).url
        except InvalidURL as e:
            raise InvalidURL(e.message, op=op) from e

    async def set_cookies(self, url: Union[str, URL], cookies: Mapping[str, Any]) -> None:
        """Stores cookies in the jar as if url had set them."""
        u = self._parse_url(url, "Client.set_cookies")
        jar = await self._cookie_jar("Client.set_cookies")
        jar.update_cookies(dict(cookies), response_url=u)

    async def filter_cookies(self, url: Union[str, URL]) -> List[Morsel]:
        """Returns the jar's cookies that would be sent to url."""
        u = self._parse_url(url, "Client.filter_cookies")
        jar = await self._cookie_jar("Client.filter_cookies")
        return list(jar.filter_cookies(u).values())

    async def filter_cookie(self, url: Union[str, URL], name: str) -> Morsel:
        """
        Raises:
            NoCookie: If no cookie with name would be sent to url.
        """
        for morsel in await self.filter_cookies(url):
            if morsel.key == name:
                return morsel
        raise NoCookie(f"named cookie '{name}' not present", op="Client.filter_cookie")

    async def close(self) -> None:
        await self.transport.close()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# Process-wide default client
_default_client: Optional[Client] = None
_default_client_used = False
_default_lock = threading.Lock()


def init_default_client(config: Optional[ClientConfig] = None, **kwargs: Any) -> Client:
    """
    Replaces the default client used by the module-level helpers.

    Raises:
        ConfigurationError: If the default client has already been used.
    """
    global _default_client
    with _default_lock:
        if _default_client_used:
            raise ConfigurationError(
                "default client already in use and cannot be re-initialized",
                op="init_default_client",
            )
        _default_client = Client(config, **kwargs)
        return _default_client


def get_default_client() -> Client:
    """Returns the default client, creating it on first use."""
    global _default_client, _default_client_used
    with _default_lock:
        if _default_client is None:
            _default_client = Client()
        _default_client_used = True
        return _default_client


async def close_default_client() -> None:
    """Closes the default client. A later get_default_client() creates a new one."""
    global _default_client, _default_client_used
    with _default_lock:
        client, _default_client = _default_client, None
        _default_client_used = False
    if client is not None:
        await client.close()


async def send(method: Union[str, Method], url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await (client or get_default_client()).send(method, url, **options)


async def get(url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await send(Method.GET, url, client=client, **options)


async def head(url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await send(Method.HEAD, url, client=client, **options)


async def post(url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await send(Method.POST, url, client=client, **options)


async def put(url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await send(Method.PUT, url, client=client, **options)


async def patch(url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await send(Method.PATCH, url, client=client, **options)


async def delete(url: Union[str, URL], client: Optional[Client] = None, **options: Any) -> Response:
    return await send(Method.DELETE, url, client=client, **options)


async def options(url: Union[str, URL], client: Optional[Client] = None, **kwargs: Any) -> Response:
    return await send(Method.OPTIONS, url, client=client, **kwargs)
