"""Cancellation context handed to every checker invocation.

A CheckContext is a thread-safe token: checkers running on worker threads
poll ``cancelled`` or sleep with ``wait()``, async checkers can poll it too.
Contexts form a tree: cancelling a parent cancels every live child, so a
caller abandoning a query reaches all in-flight checks at once.
"""

from __future__ import annotations

import threading
import time
import weakref

CANCELED = "context canceled"


class CheckContext:
    """Cancellation signal with an optional monotonic deadline."""

    def __init__(self, parent: CheckContext | None = None, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._children: weakref.WeakSet[CheckContext] = weakref.WeakSet()
        self._parent = parent

        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            parent._adopt(self)

    # ── Tree ──────────────────────────────────────────────────────────────

    def child(self, timeout: float | None = None) -> CheckContext:
        """Derive a context cancelled together with this one.

        The child's deadline is the earlier of ours and ``now + timeout``.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        return CheckContext(parent=self, deadline=deadline)

    def _adopt(self, child: CheckContext) -> None:
        with self._lock:
            reason = self._reason
            if reason is None:
                self._children.add(child)
        if reason is not None:
            child.cancel(reason)

    # ── Cancellation ──────────────────────────────────────────────────────

    def cancel(self, reason: str = CANCELED) -> None:
        """Cancel this context and all live children. First reason wins."""
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            children = list(self._children)
            self._children.clear()
        self._event.set()
        for c in children:
            c.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return ``cancelled``.

        Synchronous checkers use this as an interruptible sleep.
        """
        return self._event.wait(timeout)

    # ── Deadline ──────────────────────────────────────────────────────────

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def remaining(self) -> float | None:
        """Seconds left until the deadline (never negative), or None."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def __repr__(self) -> str:
        state = f"cancelled={self._reason!r}" if self._reason else "active"
        return f"<CheckContext {state} remaining={self.remaining()}>"
