"""
Middleware chain invoked around message handling.

A middleware is any callable taking (topic_name, body, call_next). It may
run code before/after call_next(), replace it, or skip it to short-circuit
the rest of the chain and the handler.

    class Timing(Middleware):
        def __call__(self, topic_name, body, call_next):
            start = time.monotonic()
            try:
                return call_next()
            finally:
                metrics.timing(topic_name, time.monotonic() - start)

    chain = Chain()
    chain.add(Timing)                          # every topic
    chain.add(AuditTrail, topics=["orders-*"]) # wildcard match
"""

from __future__ import annotations

import fnmatch
import functools
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Union

CallNext = Callable[[], Any]
TopicPatterns = Optional[Union[str, Sequence[str]]]


class Middleware:
    """Base middleware: pass-through."""

    def __call__(self, topic_name: str, body: str, call_next: CallNext) -> Any:
        return call_next()


class Entry:
    """A registered middleware: a class (built per invocation) or a ready callable."""

    def __init__(self, klass: Any, args: tuple = (), kwargs: Optional[dict] = None, topics: TopicPatterns = None):
        self.klass = klass
        self.args = args
        self.kwargs = kwargs or {}
        if isinstance(topics, str):
            topics = [topics]
        self.topics: Optional[List[str]] = list(topics) if topics is not None else None

    def matches(self, topic_name: str) -> bool:
        if self.topics is None:
            return True
        return any(fnmatch.fnmatchcase(topic_name, pattern) for pattern in self.topics)

    def make(self) -> Callable[[str, str, CallNext], Any]:
        if isinstance(self.klass, type):
            return self.klass(*self.args, **self.kwargs)
        return self.klass


class Chain:
    """Ordered middleware registry; registration order is outermost first."""

    def __init__(self, entries: Iterable[Entry] = ()):
        self.entries: List[Entry] = list(entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def add(self, klass: Any, *args: Any, topics: TopicPatterns = None, **kwargs: Any) -> None:
        """Append (re-registering moves an existing entry to the end)."""
        self.remove(klass)
        self.entries.append(Entry(klass, args, kwargs, topics))

    def prepend(self, klass: Any, *args: Any, topics: TopicPatterns = None, **kwargs: Any) -> None:
        self.remove(klass)
        self.entries.insert(0, Entry(klass, args, kwargs, topics))

    def insert_before(self, old: Any, klass: Any, *args: Any, topics: TopicPatterns = None, **kwargs: Any) -> None:
        self.remove(klass)
        self.entries.insert(self._index(old), Entry(klass, args, kwargs, topics))

    def insert_after(self, old: Any, klass: Any, *args: Any, topics: TopicPatterns = None, **kwargs: Any) -> None:
        self.remove(klass)
        self.entries.insert(self._index(old) + 1, Entry(klass, args, kwargs, topics))

    def remove(self, klass: Any) -> None:
        self.entries = [e for e in self.entries if e.klass is not klass]

    def exists(self, klass: Any) -> bool:
        return any(e.klass is klass for e in self.entries)

    def clear(self) -> None:
        self.entries = []

    def build(self, topic_name: str) -> List[Callable[[str, str, CallNext], Any]]:
        """Middlewares that apply to `topic_name`, outermost first."""
        return [e.make() for e in self.entries if e.matches(topic_name)]

    def invoke(self, topic_name: str, body: str, inner: CallNext) -> Any:
        """Run `inner` wrapped by every matching middleware."""
        call = inner
        for middleware in reversed(self.build(topic_name)):
            call = functools.partial(middleware, topic_name, body, call)
        return call()

    def _index(self, klass: Any) -> int:
        for i, e in enumerate(self.entries):
            if e.klass is klass:
                return i
        raise ValueError(f"Middleware not registered: {klass!r}")


__all__ = ["Middleware", "Chain", "Entry", "CallNext"]
