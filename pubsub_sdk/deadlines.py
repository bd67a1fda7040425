"""Handler deadlines.

call_with_deadline() runs a callable on a helper thread and waits up to the
deadline. On expiry control returns to the caller with HandlerTimeoutError;
the callable itself is not interrupted and keeps running in the background.
Handlers that want to stop early can poll current_deadline().
"""

from __future__ import annotations

import contextvars
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import HandlerTimeoutError

__all__ = ["Deadline", "call_with_deadline", "current_deadline"]

_current: contextvars.ContextVar[Optional["Deadline"]] = contextvars.ContextVar(
    "pubsub_deadline", default=None
)


@dataclass(frozen=True)
class Deadline:
    """Monotonic-clock expiration for one handler invocation."""

    timeout: float
    expires_at: float

    @classmethod
    def after(cls, timeout: float) -> "Deadline":
        if timeout <= 0:
            raise ValueError("Deadline timeout must be positive.")
        return cls(timeout=timeout, expires_at=time.monotonic() + timeout)

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


def current_deadline() -> Optional[Deadline]:
    """Deadline of the handler running in this context, if any."""
    return _current.get()


def call_with_deadline(func: Callable[[], Any], timeout: Optional[float]) -> Any:
    """Run `func`, giving up after `timeout` seconds (None or 0 = no limit)."""
    if not timeout:
        return func()

    deadline = Deadline.after(timeout)
    ctx = contextvars.copy_context()
    outcome: dict = {}

    def target() -> None:
        _current.set(deadline)
        try:
            outcome["result"] = func()
        except BaseException as e:
            outcome["error"] = e

    worker = threading.Thread(target=ctx.run, args=(target,), name="pubsub-handler", daemon=True)
    worker.start()
    worker.join(deadline.remaining())

    if worker.is_alive():
        raise HandlerTimeoutError(timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")
