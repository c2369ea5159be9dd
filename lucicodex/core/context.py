"""Cancellation and deadline propagation for command execution."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from lucicodex.core.models import CommandCancelledError, CommandError, CommandTimeoutError


@dataclass(frozen=True)
class ExecContext:
    """Deadline plus cancellation flag passed down every blocking call.

    Contexts derived with :meth:`with_timeout` share the parent's cancel event,
    so cancelling the parent stops every child. A child's deadline never
    extends past its parent's.
    """

    deadline: float | None = None  # time.monotonic() value
    cancel_event: threading.Event = field(default_factory=threading.Event)
    timeout: float | None = None  # seconds, for error messages

    @classmethod
    def background(cls) -> ExecContext:
        return cls()

    def with_timeout(self, seconds: float) -> ExecContext:
        deadline = time.monotonic() + seconds
        if self.deadline is not None and self.deadline < deadline:
            return ExecContext(self.deadline, self.cancel_event, self.timeout)
        return ExecContext(deadline, self.cancel_event, seconds)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def error(self) -> CommandError | None:
        """The error describing why this context is done, if it is."""
        if self.cancelled:
            return CommandCancelledError("context canceled")
        if self.expired():
            if self.timeout is not None:
                return CommandTimeoutError(f"command timed out after {self.timeout:g}s")
            return CommandTimeoutError("context deadline exceeded")
        return None

    def check(self) -> None:
        err = self.error()
        if err is not None:
            raise err
