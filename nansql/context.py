"""Call contexts carrying a deadline and a cancellation signal."""

from __future__ import annotations

import threading
import time
from typing import Optional

from nansql.exceptions import ContextCancelledError, DeadlineExceededError, QueryError


class Context:
    """Deadline and cancellation token handed to every executor call.

    A context is cancelled explicitly with :meth:`cancel`, implicitly when its
    deadline passes, or when any parent context is cancelled. Contexts are
    safe to share between threads.

    Example:
        >>> ctx = Context.background().with_timeout(5)
        >>> executor.exec("DELETE FROM jobs WHERE done = 1", ctx=ctx)
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["Context"] = None,
    ) -> None:
        """Initialize context.

        Args:
            deadline: Absolute ``time.monotonic()`` value after which calls fail.
            parent: Context whose cancellation and deadline are inherited.
        """
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self.parent = parent
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> "Context":
        """Return an empty context that is never cancelled and has no deadline."""
        return cls()

    def with_timeout(self, seconds: float) -> "Context":
        """Derive a child context that expires ``seconds`` from now."""
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_cancel(self) -> "Context":
        """Derive a child context that can be cancelled independently."""
        return Context(parent=self)

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.parent.cancelled if self.parent is not None else False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def err(self, operation: str = "call") -> Optional[QueryError]:
        """Return the error a call made now would fail with, if any."""
        if self.cancelled:
            return ContextCancelledError(f"{operation}: context cancelled", operation)
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceededError(f"{operation}: context deadline exceeded", operation)
        return None

    @property
    def done(self) -> bool:
        return self.err() is not None


def check_context(ctx: Optional[Context], operation: str) -> None:
    """Raise the context's error for ``operation`` when it is cancelled or expired."""
    if ctx is None:
        return
    error = ctx.err(operation)
    if error is not None:
        raise error
