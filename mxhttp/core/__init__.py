"""
Core Engine.

This package contains the request builder, the retry engine, the interceptor
chain, the transport and the response decoder.
"""

from .client import Client, close_default_client, get_default_client, init_default_client
from .context import Context
from .request import Method, PreparedRequest, Request
from .response import Response
from .retry import RetryPolicy, constant_backoff, default_backoff, default_trigger, exponential_backoff
from .transport import AiohttpTransport, GzipStream, Transport, TransportResponse

__all__ = [
    "AiohttpTransport",
    "Client",
    "Context",
    "GzipStream",
    "Method",
    "PreparedRequest",
    "Request",
    "Response",
    "RetryPolicy",
    "Transport",
    "TransportResponse",
    "close_default_client",
    "constant_backoff",
    "default_backoff",
    "default_trigger",
    "exponential_backoff",
    "get_default_client",
    "init_default_client",
]
