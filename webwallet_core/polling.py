"""
Cancellable polling.

``poll_until`` runs an operation repeatedly in a background task until one
attempt succeeds, racing that task against an overall deadline. Cancellation
is cooperative: the probing task checks a stop event once per iteration, and
an attempt already in flight when the stop fires is allowed to finish (each
attempt is bounded by its own timeout) and its result is discarded.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Type, TypeVar

logger = logging.getLogger("Webwallet.Polling")

T = TypeVar("T")


class PollStopped(Exception):
    """The stop signal fired before any attempt succeeded."""


async def _probe_loop(
    attempt: Callable[[], Awaitable[T]],
    stop: asyncio.Event,
    attempt_timeout: float,
    retry_delay: float,
    retryable: tuple,
    label: str,
) -> T:
    attempts = 0
    while not stop.is_set():
        attempts += 1
        try:
            return await asyncio.wait_for(attempt(), timeout=attempt_timeout)
        except retryable as exc:
            logger.debug("%s: attempt %d failed (%s)", label, attempts, type(exc).__name__)

        # Sleep between attempts, but wake up immediately on stop
        if retry_delay > 0:
            try:
                await asyncio.wait_for(stop.wait(), timeout=retry_delay)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(0)

    raise PollStopped(f"{label}: stopped after {attempts} attempts")


def _consume_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


async def poll_until(
    attempt: Callable[[], Awaitable[T]],
    *,
    deadline: float,
    attempt_timeout: float,
    retry_delay: float = 0.0,
    retryable_exceptions: Sequence[Type[BaseException]] = (OSError, asyncio.TimeoutError),
    stop: Optional[asyncio.Event] = None,
    label: str = "poll",
) -> T:
    """Retry an async callable until it succeeds or the deadline expires.

    Args:
        attempt: Async callable invoked once per iteration.
        deadline: Overall time budget in seconds.
        attempt_timeout: Time budget of a single attempt in seconds.
        retry_delay: Pause between failed attempts (interrupted by stop).
        retryable_exceptions: Exception types counted as a failed attempt;
            anything else aborts the poll and propagates.
        stop: Optional external cancellation token. When it fires the poll
            ends with PollStopped.
        label: Name used in log messages.

    Returns:
        The result of the first successful attempt.

    Raises:
        asyncio.TimeoutError: The deadline expired first. Returns no earlier
            than ``deadline`` and no later than ``deadline`` plus one
            ``attempt_timeout``.
        PollStopped: The external stop event fired first.
    """
    stop = stop or asyncio.Event()
    probe = asyncio.create_task(
        _probe_loop(
            attempt, stop, attempt_timeout, retry_delay,
            tuple(retryable_exceptions), label,
        ),
        name=f"{label}-probe",
    )
    probe.add_done_callback(_consume_result)

    try:
        done, _ = await asyncio.wait({probe}, timeout=deadline)
    finally:
        if not probe.done():
            stop.set()

    if probe in done:
        return probe.result()

    # Deadline won the race. Let the probe notice the stop and wind down;
    # a late success is discarded.
    try:
        await probe
    except PollStopped:
        pass
    except Exception:
        logger.debug("%s: probe failed after deadline", label, exc_info=True)
    raise asyncio.TimeoutError(f"{label}: no success within {deadline}s")
