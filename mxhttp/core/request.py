"""
Builds outbound requests from composable options.

A Request only records what the caller asked for; nothing is materialized
until ``prepare()`` runs at send time. Each setter touches exactly one concern
and applying the same option twice simply overwrites it.
"""

import base64
import io
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Callable,
    Mapping,
    Optional,
    Union,
)

from multidict import CIMultiDict
from pydantic import BaseModel
from yarl import URL

from mxhttp.core.context import Context
from mxhttp.core.multipart import CHUNK_SIZE, MultipartBody
from mxhttp.core.retry import RetryPolicy
from mxhttp.exceptions import BuildError, InvalidURL
from mxhttp.models.values import Cookies, Files, Form, Headers, Params, Values
from mxhttp.utils.xml_body import dict_to_xml, element_to_bytes

CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"
CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_XML = "application/xml"
CONTENT_TYPE_TEXT = "text/plain; charset=utf-8"

_FORM_BODY = object()

Body = Union[bytes, str, io.IOBase, AsyncIterable[bytes], None]


class Method(str, Enum):
    """HTTP request methods."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    CONNECT = "CONNECT"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"

    @classmethod
    def parse(cls, method: Union[str, "Method"]) -> "Method":
        if isinstance(method, Method):
            return method
        try:
            return cls(str(method).upper())
        except ValueError as e:
            raise BuildError(f"unsupported method '{method}'", op="Request") from e


@dataclass
class PreparedRequest:
    """The materialized form of a Request, ready for the transport."""

    method: str
    url: URL
    headers: CIMultiDict
    body: Union[bytes, AsyncIterable[bytes], None]
    replayable: bool = True
    multipart: Optional[MultipartBody] = None

    @property
    def host(self) -> str:
        return self.headers.get("Host") or self.url.raw_host or ""


class _StreamSource:
    """A request body backed by a file object or an async iterable."""

    def __init__(self, stream: Any):
        self.stream = stream
        self.offset: Optional[int] = None
        seekable = getattr(stream, "seekable", None)
        if callable(seekable) and seekable():
            self.offset = stream.tell()

    @property
    def replayable(self) -> bool:
        return self.offset is not None

    def rewind(self) -> None:
        if self.offset is None:
            raise BuildError(
                "request body is a stream and cannot be rewound", op="Request.rewind"
            )
        self.stream.seek(self.offset)

    def payload(self) -> Union[bytes, AsyncIterable[bytes]]:
        if self.replayable:
            self.rewind()
            data = self.stream.read()
            return data.encode("utf-8") if isinstance(data, str) else data
        if hasattr(self.stream, "__aiter__"):
            return self.stream
        return self._iter_sync()

    async def _iter_sync(self) -> AsyncIterator[bytes]:
        while chunk := self.stream.read(CHUNK_SIZE):
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk


def basic_auth(username: str, password: str) -> str:
    """Returns the Authorization header value for basic authentication."""
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def marshal_json(data: Any, escape_html: bool = False) -> bytes:
    """Encodes data as compact JSON, optionally escaping <, > and & like browsers expect."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    text = json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=_json_default)
    if escape_html:
        text = text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    return text.encode("utf-8")


class Request:
    """
    A pending outbound HTTP request.

    Usage:
        req = Request.new("GET", "https://httpbin.org/get",
                          query={"k": "v"}, user_agent="X")
        resp = await client.do(req)
    """

    def __init__(self, method: Union[str, Method], url: Union[str, URL]):
        self.method = Method.parse(method)
        self.url = self._parse_url(url)
        self.host: Optional[str] = None
        self.headers = Headers()
        self.query = Params()
        self.form = Form()
        self.cookies = Cookies()
        self.context: Optional[Context] = None
        self.retry: Optional[RetryPolicy] = None
        self._body: Any = None
        self._default_content_type: Optional[str] = None

    @classmethod
    def new(cls, method: Union[str, Method], url: Union[str, URL], **options: Any) -> "Request":
        """
        Creates a request and applies the options in the order supplied.

        Each keyword maps to the ``set_<name>`` method of the same name; tuple
        values are unpacked into positional arguments, e.g.
        ``basic_auth=("user", "pass")``.

        Raises:
            InvalidURL: If the URL cannot be parsed.
            BuildError: For an unknown option or an invalid option value.
        """
        req = cls(method, url)
        for name, value in options.items():
            req.apply(name, value)
        return req

    def apply(self, name: str, value: Any) -> "Request":
        """Applies a single named option."""
        name = _OPTION_ALIASES.get(name, name)
        if name not in _OPTIONS:
            raise BuildError(f"unknown request option '{name}'", op="Request.new")
        setter: Callable[..., Any] = getattr(self, f"set_{name}")
        if isinstance(value, tuple) and name in _TUPLE_OPTIONS:
            setter(*value)
        else:
            setter(value)
        return self

    @staticmethod
    def _parse_url(url: Union[str, URL]) -> URL:
        try:
            parsed = url if isinstance(url, URL) else URL(str(url))
        except (TypeError, ValueError) as e:
            raise InvalidURL(f"can't parse '{url}': {e}", op="Request") from e
        if parsed.scheme not in ("http", "https"):
            raise InvalidURL(f"unsupported protocol scheme in '{url}'", op="Request")
        try:
            host = parsed.host
        except ValueError as e:
            raise InvalidURL(f"invalid host in '{url}': {e}", op="Request") from e
        if not host:
            raise InvalidURL(f"no host in request URL '{url}'", op="Request")
        return parsed

    # Headers

    def set_host(self, host: str) -> "Request":
        self.host = host
        return self

    def set_headers(self, headers: Mapping[str, Any]) -> "Request":
        self.headers.update(headers)
        return self

    def set_content_type(self, content_type: str) -> "Request":
        self.headers.set("Content-Type", content_type)
        return self

    def set_user_agent(self, user_agent: str) -> "Request":
        self.headers.set("User-Agent", user_agent)
        return self

    def set_origin(self, origin: str) -> "Request":
        self.headers.set("Origin", origin)
        return self

    def set_referer(self, referer: str) -> "Request":
        self.headers.set("Referer", referer)
        return self

    def set_basic_auth(self, username: str, password: str) -> "Request":
        self.headers.set("Authorization", basic_auth(username, password))
        return self

    def set_bearer_token(self, token: str) -> "Request":
        self.headers.set("Authorization", f"Bearer {token}")
        return self

    # Query and cookies

    def set_query(self, query: Mapping[str, Any]) -> "Request":
        self.query.update(query)
        return self

    def set_cookies(self, cookies: Mapping[str, Any]) -> "Request":
        self.cookies.update(cookies)
        return self

    # Body

    def _set_payload(self, payload: Any, content_type: Optional[str]) -> "Request":
        self._body = payload
        self._default_content_type = content_type
        return self

    def set_body(self, body: Body) -> "Request":
        """
        Sets a raw body: bytes, text, a binary file object or an async iterable.

        Seekable file objects are replayable; other streams are sent once.
        """
        if body is None:
            return self._set_payload(None, None)
        if isinstance(body, (bytes, bytearray, memoryview)):
            return self._set_payload(bytes(body), None)
        if isinstance(body, str):
            return self._set_payload(body.encode("utf-8"), None)
        if hasattr(body, "read") or hasattr(body, "__aiter__"):
            return self._set_payload(_StreamSource(body), None)
        raise BuildError(
            f"unsupported body type {type(body).__name__}", op="Request.set_body"
        )

    def set_content(self, content: bytes) -> "Request":
        return self.set_body(content)

    def set_text(self, text: str) -> "Request":
        return self._set_payload(text.encode("utf-8"), CONTENT_TYPE_TEXT)

    def set_form(self, form: Mapping[str, Any]) -> "Request":
        self.form.update(form)
        return self._set_payload(_FORM_BODY, CONTENT_TYPE_FORM)

    def set_json(self, data: Any, escape_html: bool = False) -> "Request":
        try:
            payload = marshal_json(data, escape_html)
        except (TypeError, ValueError) as e:
            raise BuildError(f"can't marshal JSON: {e}", op="Request.set_json") from e
        return self._set_payload(payload, CONTENT_TYPE_JSON)

    def set_xml(self, data: Any, root: Optional[str] = None) -> "Request":
        """
        Sets an XML body from an Element, a single-root mapping, or text.

        Args:
            data: The document. A mapping without ``root`` must have exactly one
                top-level key.
            root: Wraps a mapping under this root tag.
        """
        try:
            if isinstance(data, ET.Element):
                payload = element_to_bytes(data)
            elif isinstance(data, Mapping):
                payload = dict_to_xml({root: data} if root else data)
            elif isinstance(data, str):
                payload = data.encode("utf-8")
            elif isinstance(data, bytes):
                payload = data
            else:
                raise TypeError(f"unsupported XML document type {type(data).__name__}")
        except (TypeError, ValueError) as e:
            raise BuildError(f"can't marshal XML: {e}", op="Request.set_xml") from e
        return self._set_payload(payload, CONTENT_TYPE_XML)

    def set_multipart(
        self, files: Mapping[str, Any], form: Optional[Mapping[str, Any]] = None
    ) -> "Request":
        """
        Sets a streamed multipart/form-data body.

        Files are validated now; their contents are read by a background
        producer at send time. Without ``form`` the request's own form values
        are sent as fields.
        """
        fields = Values(form) if form is not None else self.form.clone()
        body = MultipartBody(Files(files), fields)
        return self._set_payload(body, body.content_type)

    # Execution

    def set_context(self, context: Optional[Context]) -> "Request":
        self.context = context
        return self

    def set_timeout(self, timeout: float) -> "Request":
        """Attaches a fresh context that expires after timeout seconds."""
        return self.set_context(Context(timeout=timeout))

    def set_retry(
        self,
        policy: Union[RetryPolicy, int, None],
        **kwargs: Any,
    ) -> "Request":
        """
        Overrides the client's retry policy for this request.

        Accepts a RetryPolicy, or a max attempt count plus RetryPolicy
        keyword arguments (``backoff``, ``trigger``, ``min_wait``, ``max_wait``).
        """
        if policy is None or isinstance(policy, RetryPolicy):
            self.retry = policy
        elif isinstance(policy, int):
            self.retry = RetryPolicy(max_attempts=policy, **kwargs)
        else:
            raise BuildError(
                f"unsupported retry policy {type(policy).__name__}", op="Request.set_retry"
            )
        return self

    # Materialization

    @property
    def replayable(self) -> bool:
        """Whether the body can be sent more than once with identical bytes."""
        if isinstance(self._body, MultipartBody):
            return False
        if isinstance(self._body, _StreamSource):
            return self._body.replayable
        return True

    @property
    def body(self) -> Any:
        return self._body

    def rewind(self) -> None:
        """
        Restores the body for another attempt.

        Raises:
            BuildError: If the body is a stream that cannot be replayed.
        """
        if not self.replayable:
            raise BuildError(
                "request body is a stream and cannot be rewound", op="Request.rewind"
            )
        if isinstance(self._body, _StreamSource):
            self._body.rewind()

    def final_url(self) -> URL:
        """The URL with the request query merged over the URL's own query."""
        if not self.query:
            return self.url
        query = self.query.clone()
        for key in self.url.query.keys():
            query.set_default(key, self.url.query.getall(key))
        base = self.url.with_query(None).with_fragment(None)
        return URL(f"{base}?{query.encode(escape=True)}", encoded=True)

    def prepare(
        self,
        default_headers: Optional[Mapping[str, str]] = None,
        open_body: bool = True,
    ) -> PreparedRequest:
        """
        Materializes the request for one attempt.

        Args:
            default_headers: Client-level headers applied only when the
                request does not set them.
            open_body: Set to False to compute headers without touching the
                body, which leaves streamed bodies unconsumed.
        """
        headers = self.headers.clone()
        if default_headers:
            headers.merge(default_headers)
        if self._default_content_type:
            headers.set_default("Content-Type", self._default_content_type)
        if self.host:
            headers.set("Host", self.host)
        if self.cookies:
            pairs = "; ".join(f"{k}={v}" for k, v in sorted(self.cookies.items()))
            existing = headers.first("Cookie")
            headers.set("Cookie", f"{existing}; {pairs}" if existing else pairs)

        wire_headers: CIMultiDict = CIMultiDict()
        for key, value in headers.items_sorted():
            wire_headers.add(key, value)

        multipart = self._body if isinstance(self._body, MultipartBody) else None
        body: Union[bytes, AsyncIterable[bytes], None] = None
        if open_body or self.replayable:
            if self._body is _FORM_BODY:
                body = self.form.encode(escape=True).encode("utf-8")
            elif isinstance(self._body, _StreamSource):
                body = self._body.payload()
            elif multipart is not None:
                body = multipart.open(self.context)
            else:
                body = self._body

        return PreparedRequest(
            method=self.method.value,
            url=self.final_url(),
            headers=wire_headers,
            body=body,
            replayable=self.replayable,
            multipart=multipart,
        )

    def dump(self, with_body: bool = True) -> str:
        """Returns the HTTP/1.x style trace of the request, '> ' prefixed."""
        from mxhttp.core.dump import dump_request

        return dump_request(self.prepare(open_body=False), with_body)

    def to_curl(self) -> str:
        """Returns an equivalent curl command line."""
        from mxhttp.core.dump import to_curl

        return to_curl(self.prepare(open_body=False))

    def __repr__(self) -> str:
        return f"<Request [{self.method.value} {self.url}]>"


_OPTIONS = {
    "host",
    "headers",
    "content_type",
    "user_agent",
    "origin",
    "referer",
    "basic_auth",
    "bearer_token",
    "query",
    "cookies",
    "body",
    "content",
    "text",
    "form",
    "json",
    "xml",
    "multipart",
    "context",
    "timeout",
    "retry",
}
_OPTION_ALIASES = {"params": "query", "data": "body", "files": "multipart"}
_TUPLE_OPTIONS = {"basic_auth", "multipart"}
