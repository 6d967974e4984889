"""Health engine: runs checkers under a shared deadline and aggregates results.

Every check is raced against the engine timeout. Async checkers run as
tasks on the event loop; each synchronous checker invocation gets a
dedicated daemon thread, so no check ever waits in a queue for a worker
while its deadline runs. A checker that loses the race is cancelled
(context + task cancel) but cannot be killed: a thread or a coroutine that
ignores cancellation keeps running in the background, and its late outcome
is logged when it finally settles.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import weakref
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any

from .context import CheckContext
from .models import (
    DEADLINE_EXCEEDED,
    Checker,
    CheckError,
    ComponentNotFound,
    ComponentResult,
    Result,
)
from .registry import CheckerRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
ENGINE_CLOSED = "engine closed"


# ── Single-check evaluator ───────────────────────────────────────────────────


def _outcome(name: str, fut: asyncio.Future[Any], t0: float) -> ComponentResult:
    """Convert a settled check future into a ComponentResult."""
    elapsed = (time.perf_counter() - t0) * 1000
    if fut.cancelled():
        return ComponentResult.down(name, asyncio.CancelledError("check cancelled"), duration_ms=elapsed)

    exc = fut.exception()
    if exc is not None:
        details = exc.details if isinstance(exc, CheckError) else None
        logger.info("Check %s failed: %s", name, exc)
        return ComponentResult.down(name, exc, details=details, duration_ms=elapsed)

    details = fut.result()
    if details is not None and not isinstance(details, Mapping):
        err = TypeError(f"checker returned {type(details).__name__}, expected a mapping")
        return ComponentResult.down(name, err, duration_ms=elapsed)
    return ComponentResult.up(name, details, duration_ms=elapsed)


def _log_late(name: str):
    """Done-callback for work that outlived its deadline."""

    def callback(fut: asyncio.Future[Any] | Future[Any]) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            logger.warning("Check %s failed after its deadline: %s: %s", name, type(exc).__name__, exc)
        else:
            logger.debug("Check %s completed after its deadline", name)

    return callback


def _start_thread(name: str, checker: Checker, ctx: CheckContext) -> Future[Any]:
    """Run a synchronous ``checker.check(ctx)`` on its own daemon thread."""
    fut: Future[Any] = Future()

    def run() -> None:
        if not fut.set_running_or_notify_cancel():
            return
        try:
            result = checker.check(ctx)
        except Exception as e:
            fut.set_exception(e)
        else:
            fut.set_result(result)

    threading.Thread(target=run, name=f"vitals-check-{name}", daemon=True).start()
    return fut


async def evaluate(
    checker: Checker,
    name: str,
    timeout: float,
    ctx: CheckContext | None = None,
) -> ComponentResult:
    """Run one checker, bounded by ``timeout`` seconds. Never raises for check failures.

    A zero timeout reports the deadline as exceeded without invoking the
    checker. Cancelling the awaiting task cancels the check and re-raises.
    """
    if timeout < 0:
        raise ValueError("timeout must be >= 0")

    check_ctx = (ctx or CheckContext()).child(timeout)
    if timeout == 0:
        check_ctx.cancel(DEADLINE_EXCEEDED)
        return ComponentResult.deadline_exceeded(name)

    t0 = time.perf_counter()
    thread_fut: Future[Any] | None = None

    if inspect.iscoroutinefunction(checker.check):
        fut: asyncio.Future[Any] = asyncio.ensure_future(checker.check(check_ctx))
    else:
        thread_fut = _start_thread(name, checker, check_ctx)
        fut = asyncio.wrap_future(thread_fut)

    try:
        done, _ = await asyncio.wait({fut}, timeout=timeout)
    except asyncio.CancelledError:
        check_ctx.cancel()
        fut.cancel()
        raise

    if fut in done:
        return _outcome(name, fut, t0)

    # Deadline won the race: detach the check, propagating cancellation.
    elapsed = (time.perf_counter() - t0) * 1000
    check_ctx.cancel(DEADLINE_EXCEEDED)
    if thread_fut is not None:
        # The thread keeps going; watch its own future, not the wrapper.
        thread_fut.add_done_callback(_log_late(name))
    else:
        fut.add_done_callback(_log_late(name))
    fut.cancel()
    logger.warning("Check %s exceeded its %.3fs deadline", name, timeout)
    return ComponentResult.deadline_exceeded(name, duration_ms=elapsed)


# ── Aggregate evaluator ──────────────────────────────────────────────────────


class HealthEngine:
    """Fans checks out over a registry and aggregates the results.

    ``timeout`` is the one per-check deadline shared by every component;
    it is fixed at construction. ``close()`` cancels whatever is still in
    flight, after which the engine refuses new queries.
    """

    def __init__(self, registry: CheckerRegistry, timeout: float = DEFAULT_TIMEOUT) -> None:
        if timeout < 0:
            raise ValueError("timeout must be >= 0")
        self.registry = registry
        self._timeout = float(timeout)
        self._closed = False
        self._inflight: weakref.WeakSet[CheckContext] = weakref.WeakSet()

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def closed(self) -> bool:
        return self._closed

    def names(self) -> list[str]:
        return self.registry.names()

    def _run_context(self, ctx: CheckContext | None) -> CheckContext:
        if self._closed:
            raise RuntimeError("HealthEngine is closed")
        run_ctx = (ctx or CheckContext()).child()
        self._inflight.add(run_ctx)
        return run_ctx

    async def check_all(self, ctx: CheckContext | None = None) -> Result:
        """Evaluate every registered component concurrently.

        Raises ``RuntimeError`` if the engine has been closed.
        """
        run_ctx = self._run_context(ctx)
        t0 = time.perf_counter()
        checkers = self.registry.snapshot()
        names = list(checkers)

        # One independent slot per component; gather preserves positions.
        results = await asyncio.gather(*(
            evaluate(checkers[n], n, self._timeout, run_ctx) for n in names
        ))
        self._inflight.discard(run_ctx)
        result = Result.from_components(list(results))

        logger.info(
            "Health check completed: %s (%d components, %d down, %.1fms)",
            result.status.value,
            len(results),
            len(result.failing()),
            (time.perf_counter() - t0) * 1000,
        )
        return result

    async def check_one(self, name: str, ctx: CheckContext | None = None) -> ComponentResult:
        """Evaluate a single component. Raises ``ComponentNotFound`` for unknown names."""
        checker = self.registry.get(name)
        if checker is None:
            raise ComponentNotFound(name)
        run_ctx = self._run_context(ctx)
        result = await evaluate(checker, name, self._timeout, run_ctx)
        self._inflight.discard(run_ctx)
        return result

    def close(self) -> None:
        """Cancel in-flight checks and refuse new ones. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        for run_ctx in list(self._inflight):
            run_ctx.cancel(ENGINE_CLOSED)
        self._inflight.clear()

    def __enter__(self) -> HealthEngine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
