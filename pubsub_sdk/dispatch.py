"""
Dispatch strategies: where one message's processing runs.

- inline : on the polling thread, before the next message
- thread : on a bounded thread pool
- fork   : in a forked child process (own fault boundary)

The subscriber never waits for concurrent units before polling again.
process() blocks only when the facility is saturated (back-pressure).
flush() is the per-batch barrier: it reaps finished units without blocking.
shutdown(wait=True) lets in-flight units finish when the subscriber stops.
"""

from __future__ import annotations

import multiprocessing
import signal
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Set, Union

from .constants import DEFAULT_MAX_WORKERS, DISPATCH_STRATEGIES
from .errors import ConfigurationError
from .logging import get_logger

Unit = Callable[[], Any]
ExitHook = Optional[Callable[[], Any]]


class DispatchStrategy(ABC):
    name = ""

    def __init__(self, on_exit: ExitHook = None, logger=None):
        self.on_exit = on_exit
        self.logger = logger or get_logger("dispatch")

    @abstractmethod
    def process(self, unit: Unit) -> None:
        """Run `unit` now or hand it to the concurrent facility."""

    def flush(self) -> None:
        pass

    def shutdown(self, wait: bool = True) -> None:
        pass

    @property
    def pending(self) -> int:
        return 0

    def _run(self, unit: Unit) -> None:
        try:
            unit()
        finally:
            if self.on_exit:
                self.on_exit()


class InlineDispatcher(DispatchStrategy):
    name = "inline"

    def process(self, unit: Unit) -> None:
        unit()


class ThreadDispatcher(DispatchStrategy):
    """Thread pool; at most `max_pending` units queued or running."""

    name = "thread"

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS, max_pending: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self.max_workers = max(1, int(max_workers))
        self.max_pending = max(self.max_workers, int(max_pending or self.max_workers * 2))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots = threading.BoundedSemaphore(self.max_pending)
        self._futures: Set[Future] = set()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for f in self._futures if not f.done())

    def process(self, unit: Unit) -> None:
        self._slots.acquire()
        try:
            future = self._pool().submit(self._run, unit)
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._done)

    def _done(self, future: Future) -> None:
        self._slots.release()
        error = future.exception()
        if error is not None:
            self.logger.error(error, {"context": "dispatch_unit", "strategy": self.name})

    def flush(self) -> None:
        with self._lock:
            self._futures = {f for f in self._futures if not f.done()}
            in_flight = len(self._futures)
        if in_flight:
            self.logger.debug("Dispatch units in flight", {"count": in_flight, "strategy": self.name})

    def shutdown(self, wait: bool = True) -> None:
        """Drain the pool; the next process() call starts a fresh one."""
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
        self.flush()

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pubsub-dispatch")
        return self._executor


class ForkDispatcher(DispatchStrategy):
    """One forked child per unit; at most `max_processes` alive at once."""

    name = "fork"

    def __init__(self, max_processes: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        if "fork" not in multiprocessing.get_all_start_methods():
            raise ConfigurationError("fork dispatch is not available on this platform")
        self.max_processes = int(max_processes) if max_processes else None
        self._context = multiprocessing.get_context("fork")
        self._children: List[Any] = []

    @property
    def pending(self) -> int:
        return sum(1 for p in self._children if p.is_alive())

    def process(self, unit: Unit) -> None:
        self.flush()
        while self.max_processes and len(self._children) >= self.max_processes:
            self._children[0].join()
            self.flush()

        child = self._context.Process(target=self._run_child, args=(unit,), name="pubsub-dispatch")
        child.start()
        self._children.append(child)

    def _run_child(self, unit: Unit) -> None:
        # the parent's stop handlers only flip its subscribed flag
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        signal.signal(signal.SIGINT, signal.default_int_handler)
        self._run(unit)

    def flush(self) -> None:
        alive = []
        for child in self._children:
            if child.is_alive():
                alive.append(child)
                continue
            child.join()
            if child.exitcode:
                self.logger.error("Dispatch process exited abnormally", {
                    "pid": child.pid,
                    "exitcode": child.exitcode,
                })
        self._children = alive

    def shutdown(self, wait: bool = True) -> None:
        if wait:
            for child in list(self._children):
                child.join()
        self.flush()


DispatchValue = Union[bool, str, None, DispatchStrategy]


def validate_strategy_name(name: str) -> str:
    if name not in DISPATCH_STRATEGIES:
        raise ConfigurationError(
            f"Invalid dispatch strategy `{name}`, must be one of {list(DISPATCH_STRATEGIES)}"
        )
    return name


def resolve_dispatcher(
    value: DispatchValue,
    default_name: str,
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    on_exit: ExitHook = None,
    logger=None,
) -> DispatchStrategy:
    """
    Turn the subscriber `dispatch` option into a concrete strategy:
    False/None -> inline, True -> `default_name`, a name, or an instance.
    """
    if isinstance(value, DispatchStrategy):
        return value
    if value is None or value is False:
        name = "inline"
    elif value is True:
        name = default_name
    elif isinstance(value, str):
        name = value
    else:
        raise ConfigurationError(f"Invalid dispatch value `{value!r}`")

    name = validate_strategy_name(name)
    if name == "inline":
        return InlineDispatcher(logger=logger)
    if name == "thread":
        return ThreadDispatcher(max_workers=max_workers, on_exit=on_exit, logger=logger)
    return ForkDispatcher(max_processes=max_workers, on_exit=on_exit, logger=logger)


__all__ = [
    "DispatchStrategy",
    "InlineDispatcher",
    "ThreadDispatcher",
    "ForkDispatcher",
    "resolve_dispatcher",
    "validate_strategy_name",
]
