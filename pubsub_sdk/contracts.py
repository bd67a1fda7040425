# pubsub_sdk/contracts.py
"""
SDK Contracts
- No business logic here.
- Collaborator protocols, the hooks context container, and the hooks interface.

Services will:
  - subclass SubscriberHooks
  - implement: handle(body, topic_name[, ack]) and optionally setup(ctx),
    before_message(message), on_error(error)

The runner will:
  - build a Ctx (config + queue client + logger)
  - call hooks.setup(ctx) once at startup
  - subscribe hooks.handle to the configured queue
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ContextManager, Dict, List, Optional, Protocol, runtime_checkable

# ---------------------------
# Collaborator protocols (duck-typed)
# ---------------------------

@runtime_checkable
class QueueClientProto(Protocol):
    """Queue adapter used by the subscriber (io_sqs.SQSClient in production)."""
    def get_queue_url(self, queue_name: str) -> str: ...
    def receive_messages(self, queue_url: str, max_messages: int, wait_seconds: int) -> List[Dict[str, Any]]: ...
    def delete_message(self, queue_url: str, receipt_handle: str) -> None: ...
    def delete_message_batch(self, queue_url: str, entries: List[Dict[str, str]]) -> List[str]: ...
    def change_visibility(self, queue_url: str, receipt_handle: str, visibility_timeout: int) -> None: ...
    def visibility_heartbeat(self, queue_url: str, receipt_handle: str, base_timeout: int) -> ContextManager[None]: ...


@runtime_checkable
class LoggerProto(Protocol):
    """Structured logger used everywhere."""
    def info(self, msg: str, extra: Optional[Dict[str, Any]] = None) -> None: ...
    def warning(self, msg: str, extra: Optional[Dict[str, Any]] = None) -> None: ...
    def error(self, msg: Any, extra: Optional[Dict[str, Any]] = None) -> None: ...
    def debug(self, msg: str, extra: Optional[Dict[str, Any]] = None) -> None: ...


# ---------------------------
# Context object (passed to hooks.setup)
# ---------------------------

@dataclass
class Ctx:
    """
    Startup context handed to service hooks.
    - config: the SubscriberConfig the runner loaded
    - queue: concrete queue adapter
    - logger: runner logger
    """
    config: Any
    queue: QueueClientProto
    logger: LoggerProto


# ---------------------------
# Hooks interface
# ---------------------------

class SubscriberHooks:
    """
    Services implement ONLY handle(); the rest is optional.

    handle() receives (body, topic_name) when auto_delete is on, and
    (body, topic_name, ack) when off; the service then deletes with
    Subscriber.delete_messages([ack]).
    """

    def setup(self, ctx: Ctx) -> None:
        """Load models/connections once before polling."""

    def handle(self, body: str, topic_name: str, ack: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError

    # Optional: runner wires these only when a subclass overrides them
    def before_message(self, message: Any) -> None:
        """Called with the Message right before handle()."""

    def on_error(self, error: BaseException) -> None:
        """Global error handler for per-message failures."""


__all__ = ["QueueClientProto", "LoggerProto", "Ctx", "SubscriberHooks"]
