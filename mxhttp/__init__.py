"""
mxhttp - an asyncio HTTP client with composable requests, retries,
interceptors and lenient response decoding.
"""

__version__ = "0.3.0"

from mxhttp.core.client import (  # noqa: E402
    Client,
    close_default_client,
    delete,
    get,
    get_default_client,
    head,
    init_default_client,
    options,
    patch,
    post,
    put,
    send,
)
from mxhttp.core.context import Context  # noqa: E402
from mxhttp.core.request import Method, Request  # noqa: E402
from mxhttp.core.response import Response  # noqa: E402
from mxhttp.core.retry import RetryPolicy  # noqa: E402
from mxhttp.exceptions import (  # noqa: E402
    BuildError,
    CancellationError,
    ConfigurationError,
    DecodeError,
    HookError,
    InvalidURL,
    MxHttpError,
    NoCookie,
    StatusError,
    TransportError,
)
from mxhttp.models import ClientConfig, Cookies, File, Files, Form, Headers, JSONDict, Params  # noqa: E402

__all__ = [
    "BuildError",
    "CancellationError",
    "Client",
    "ClientConfig",
    "ConfigurationError",
    "Context",
    "Cookies",
    "DecodeError",
    "File",
    "Files",
    "Form",
    "Headers",
    "HookError",
    "InvalidURL",
    "JSONDict",
    "Method",
    "MxHttpError",
    "NoCookie",
    "Params",
    "Request",
    "Response",
    "RetryPolicy",
    "StatusError",
    "TransportError",
    "close_default_client",
    "delete",
    "get",
    "get_default_client",
    "head",
    "init_default_client",
    "options",
    "patch",
    "post",
    "put",
    "send",
]
