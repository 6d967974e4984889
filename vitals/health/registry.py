"""Checker registry: name → Checker, guarded by a reader-writer lock.

Queries take the read side only long enough to copy what they need;
registration takes the write side. Waiting writers block new readers so
registration cannot be starved by a steady stream of queries.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from .context import CheckContext
from .models import Checker

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many readers or a single writer (thread-safe, writer-preferring)."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# ── Function adapters ────────────────────────────────────────────────────────


class _FuncChecker:
    def __init__(self, fn: Callable[[CheckContext], Any]) -> None:
        self._fn = fn

    def check(self, ctx: CheckContext) -> Any:
        return self._fn(ctx)

    def __repr__(self) -> str:
        return f"func_checker({getattr(self._fn, '__qualname__', self._fn)!r})"


class _AsyncFuncChecker(_FuncChecker):
    async def check(self, ctx: CheckContext) -> Any:
        return await self._fn(ctx)


def func_checker(fn: Callable[[CheckContext], Any]) -> Checker:
    """Wrap ``fn(ctx)`` or ``async fn(ctx)`` as a Checker."""
    if inspect.iscoroutinefunction(fn):
        return _AsyncFuncChecker(fn)
    return _FuncChecker(fn)


# ── Registry ─────────────────────────────────────────────────────────────────


class CheckerRegistry:
    """Concurrency-safe mapping of component name to Checker."""

    def __init__(self) -> None:
        self._checkers: dict[str, Checker] = {}
        self._lock = ReadWriteLock()

    def register(self, name: str, checker: Checker | Callable[[CheckContext], Any]) -> Checker:
        """Register ``checker`` under ``name``; plain callables are wrapped.

        Raises ``ValueError`` if the name is empty or already taken.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Component name is required")
        if not isinstance(checker, Checker):
            if not callable(checker):
                raise TypeError(f"{name}: expected a Checker or callable, got {type(checker).__name__}")
            checker = func_checker(checker)

        with self._lock.write():
            if name in self._checkers:
                raise ValueError(f"Component '{name}' is already registered")
            self._checkers[name] = checker
        logger.info("Registered component '%s' (%s)", name, type(checker).__name__)
        return checker

    def unregister(self, name: str) -> bool:
        """Remove a component. Returns True if it was registered."""
        with self._lock.write():
            removed = self._checkers.pop(name, None) is not None
        if removed:
            logger.info("Unregistered component '%s'", name)
        return removed

    def get(self, name: str) -> Checker | None:
        with self._lock.read():
            return self._checkers.get(name)

    def snapshot(self) -> dict[str, Checker]:
        """Copy of the current name → checker pairs, taken under the read lock."""
        with self._lock.read():
            return dict(self._checkers)

    def names(self) -> list[str]:
        with self._lock.read():
            return sorted(self._checkers)

    def __contains__(self, name: object) -> bool:
        with self._lock.read():
            return name in self._checkers

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._checkers)
