"""
Before-request and after-response interceptors.

A hook is a plain callable or a coroutine function. Before hooks receive the
Request and may mutate it; after hooks receive the Response. A hook aborts
the chain by raising.
"""

import inspect
import logging
import time
import weakref
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Mapping, Optional, Tuple, Union

from mxhttp.core.request import basic_auth
from mxhttp.exceptions import HookError, MxHttpError

if TYPE_CHECKING:
    from mxhttp.core.request import Request
    from mxhttp.core.response import Response
    from mxhttp.utils.structured_logger import HTTPLogger

log = logging.getLogger(__name__)

BeforeRequestHook = Callable[["Request"], Union[None, Awaitable[None]]]
AfterResponseHook = Callable[["Response"], Union[None, Awaitable[None]]]


def _hook_name(hook: Callable) -> str:
    return getattr(hook, "__qualname__", None) or type(hook).__name__


async def _call(hook: Callable, arg: Any, stage: str) -> Optional[MxHttpError]:
    try:
        outcome = hook(arg)
        if inspect.isawaitable(outcome):
            await outcome
    except MxHttpError as e:
        return e
    except Exception as e:
        return HookError(f"{type(e).__name__}: {e}", op=f"{stage} {_hook_name(hook)}", cause=e)
    return None


async def run_before_hooks(hooks: Iterable[BeforeRequestHook], request: "Request") -> Optional[MxHttpError]:
    """Runs hooks in order and returns the first failure, if any."""
    for hook in hooks:
        error = await _call(hook, request, "before_request")
        if error is not None:
            log.debug(f"Before hook {_hook_name(hook)} aborted {request!r}: {error}")
            return error
    return None


async def run_after_hooks(hooks: Iterable[AfterResponseHook], resp: "Response") -> None:
    """
    Runs hooks in order unless resp already carries an error. The first
    failure becomes the response's error and stops the chain.
    """
    if resp.error is not None:
        return
    for hook in hooks:
        error = await _call(hook, resp, "after_response")
        if error is not None:
            resp.set_error(error)
            return


# Client-level defaults, overridden by request-level options


def set_host_default(host: str) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        if not req.host:
            req.set_host(host)

    return hook


def set_headers_default(headers: Mapping[str, Any]) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.headers.merge(headers)

    return hook


def set_content_type_default(content_type: str) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.headers.set_default("Content-Type", content_type)

    return hook


def set_user_agent_default(user_agent: str) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.headers.set_default("User-Agent", user_agent)

    return hook


def set_referer_default(referer: str) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.headers.set_default("Referer", referer)

    return hook


def set_query_default(params: Mapping[str, Any]) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.query.merge(params)

    return hook


def set_form_default(form: Mapping[str, Any]) -> BeforeRequestHook:
    """Merges form values; a request without a body gets a form body."""

    def hook(req: "Request") -> None:
        req.form.merge(form)
        if req.body is None:
            req.set_form({})

    return hook


def set_cookies_default(cookies: Mapping[str, Any]) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.cookies.merge(cookies)

    return hook


def set_basic_auth_default(username: str, password: str) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.headers.set_default("Authorization", basic_auth(username, password))

    return hook


def set_bearer_token_default(token: str) -> BeforeRequestHook:
    def hook(req: "Request") -> None:
        req.headers.set_default("Authorization", f"Bearer {token}")

    return hook


def ensure_status(code: int) -> AfterResponseHook:
    def hook(resp: "Response") -> None:
        resp.ensure_status(code)

    return hook


def ensure_status_2xx() -> AfterResponseHook:
    def hook(resp: "Response") -> None:
        resp.ensure_status_2xx()

    return hook


def logging_hooks(http_logger: "HTTPLogger") -> Tuple[BeforeRequestHook, AfterResponseHook]:
    """
    Returns a (before, after) pair that emits structured request events.

    Usage:
        before, after = logging_hooks(http_logger)
        client = Client(before_request=[before], after_response=[after])
    """
    started: "weakref.WeakKeyDictionary[Request, float]" = weakref.WeakKeyDictionary()

    def before(req: "Request") -> None:
        started[req] = time.perf_counter()
        http_logger.request_started(req.method.value, str(req.final_url()), dict(req.headers.items_sorted()))

    def after(resp: "Response") -> None:
        req = resp.request
        begin = started.pop(req, None) if req is not None else None
        duration_ms = (time.perf_counter() - begin) * 1000 if begin is not None else 0.0
        method = req.method.value if req is not None else ""
        url = str(resp.url or "")
        if resp.status >= 400:
            http_logger.request_failed(method, url, resp.status, resp.reason, duration_ms)
        else:
            http_logger.request_completed(method, url, resp.status, duration_ms)

    return before, after
