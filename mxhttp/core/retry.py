"""
Retry policy and the retry-with-backoff state machine.
"""

import inspect
import logging
import random
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from mxhttp.core.context import Context
from mxhttp.exceptions import CancellationError, ConfigurationError, TransportError

if TYPE_CHECKING:
    from mxhttp.core.request import Request
    from mxhttp.core.response import Response

log = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 1
DEFAULT_MIN_WAIT = 1.0
DEFAULT_MAX_WAIT = 30.0

Backoff = Callable[[float, float, int, Optional["Response"]], float]
Trigger = Callable[["Response"], bool]


def exponential_backoff(jitter: bool = True) -> Backoff:
    """
    Returns an exponential backoff, optionally with jitter.

    The base wait is ``min(max_wait, min_wait * 2**attempt)``. With jitter the
    wait becomes ``base/2 + uniform(0, base/2)``. The result is never below ``min_wait``.
    See: https://aws.amazon.com/blogs/architecture/exponential-backoff-and-jitter/
    """

    def backoff(min_wait: float, max_wait: float, attempt: int, _resp: Optional["Response"] = None) -> float:
        base = min(max_wait, min_wait * (2 ** attempt))
        if jitter:
            half = base / 2
            base = half + random.uniform(0, half)
        return max(base, min_wait)

    return backoff


default_backoff: Backoff = exponential_backoff(jitter=True)


def constant_backoff(delay: float) -> Backoff:
    """Waits the same delay between every attempt."""

    def backoff(min_wait: float, max_wait: float, attempt: int, _resp: Optional["Response"] = None) -> float:
        return delay

    return backoff


def default_trigger(resp: "Response") -> bool:
    """Retries when the attempt failed at the transport level."""
    return isinstance(resp.error, TransportError)


def status_trigger(*statuses: int) -> Trigger:
    """Retries on transport errors and on any of the given status codes."""
    codes = frozenset(statuses)

    def trigger(resp: "Response") -> bool:
        return default_trigger(resp) or (resp.raw is not None and resp.status in codes)

    return trigger


@dataclass(frozen=True)
class RetryPolicy:
    """
    Specifies how failed attempts are retried.

    A max_attempts of 1 or less is the no-op policy: exactly one attempt,
    whatever the trigger or backoff.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_wait: float = DEFAULT_MIN_WAIT
    max_wait: float = DEFAULT_MAX_WAIT
    backoff: Backoff = field(default=default_backoff, compare=False)
    trigger: Trigger = field(default=default_trigger, compare=False)

    def __post_init__(self):
        if self.min_wait < 0 or self.max_wait < 0:
            raise ConfigurationError("retry wait times cannot be negative", op="RetryPolicy")
        if self.max_wait < self.min_wait:
            raise ConfigurationError("max_wait cannot be lower than min_wait", op="RetryPolicy")

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    @property
    def attempts(self) -> int:
        """The effective number of attempts."""
        return max(1, self.max_attempts)

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 1

    def wait_time(self, attempt: int, resp: Optional["Response"]) -> float:
        return max(0.0, self.backoff(self.min_wait, self.max_wait, attempt, resp))

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return replace(self, max_attempts=max_attempts)


Attempt = Callable[[int], Awaitable["Response"]]


async def execute_with_retry(
    attempt: Attempt,
    request: "Request",
    policy: RetryPolicy,
    context: Context,
    cancelled: Callable[[CancellationError], "Response"],
) -> "Response":
    """
    Delivers a request, retrying according to policy while honoring cancellation.

    Args:
        attempt: Dispatches attempt ``i`` and returns its response. It must
            race the context itself and raise CancellationError when it loses.
        request: The request being delivered; its body is rewound between attempts.
        policy: The retry policy.
        context: The request's cancellation context.
        cancelled: Builds the terminal response for a cancellation.

    Returns:
        The last response. A cancellation during an attempt or a wait yields a
        response carrying only the CancellationError.
    """
    max_attempts = policy.attempts
    if max_attempts > 1 and not request.replayable:
        log.debug(
            f"Request body of {request!r} is a stream; retries disabled "
            f"(policy allowed {max_attempts} attempts)."
        )
        max_attempts = 1

    i = 0
    while True:
        if i > 0:
            request.rewind()

        try:
            resp = await attempt(i)
        except CancellationError as e:
            return cancelled(e)

        if i == max_attempts - 1:
            return resp
        should_retry = policy.trigger(resp)
        if inspect.isawaitable(should_retry):
            should_retry = await should_retry
        if not should_retry:
            return resp

        wait = policy.wait_time(i, resp)
        log.debug(
            f"Attempt {i + 1}/{max_attempts} for {request!r} failed "
            f"({resp.error or resp.status}); retrying in {wait:.2f}s"
        )
        await resp.close()
        try:
            await context.sleep(wait)
        except CancellationError as e:
            return cancelled(e)
        i += 1
