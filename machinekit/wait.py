"""Generic convergence polling.

A single level-triggered primitive used everywhere a caller needs to wait
for distributed state to match a target: a domain getting an address, SSH
answering, the engine API coming up, a service reaching its replica count.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_before_delay,
    stop_never,
    wait_fixed,
)

from machinekit.exceptions import ConvergeTimeoutError

type Predicate = Callable[[], Awaitable[object] | object]


async def await_converge(
    predicate: Predicate,
    *,
    interval: float,
    timeout: float | None = None,
    description: str = "convergence",
) -> None:
    """Call predicate every ``interval`` seconds until it stops raising.

    The predicate signals "not converged yet" by raising a descriptive
    exception; returning normally (any value) is success. Every call
    re-evaluates the full state, nothing is carried between ticks.

    Args:
        predicate: Zero-argument callable, sync or async.
        interval: Fixed delay between attempts in seconds.
        timeout: Deadline in seconds. None polls until the awaiting task is
            cancelled.
        description: Description for error messages.

    Raises:
        ConvergeTimeoutError: If the next attempt would start past the
            deadline. Chained from the last predicate error.
    """
    stop = stop_never if timeout is None else stop_before_delay(timeout)
    attempts = 0

    try:
        async for attempt in AsyncRetrying(
            stop=stop,
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(Exception),
        ):
            with attempt:
                attempts += 1
                result = predicate()
                if inspect.isawaitable(result):
                    await result
    except RetryError as exc:
        last = exc.last_attempt.exception()
        logger.debug(
            "Gave up waiting for {description} after {attempts} attempts: {last}",
            description=description, attempts=attempts, last=last,
        )
        raise ConvergeTimeoutError(
            f"Timeout waiting for {description} after {timeout:.1f}s: {last}"
        ) from last
