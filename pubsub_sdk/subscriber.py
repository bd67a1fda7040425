"""
Subscription engine.

Polls the configured queue and, for every received record:

    normalize -> soft lock -> dispatch -> middleware(handler [+ delete])
              -> hard lock on success
              -> unlock, optional visibility reset, error handler on failure

Delivery is at-least-once with best-effort deduplication: the lock keeps a
message id from being processed twice at the same time and suppresses
redeliveries for the hard-lock retention window.

Usage:
    config = load_config("config/subscriber.yaml")
    subscriber = Subscriber(config, dispatch="thread", timeout=30)
    subscriber.subscribe(lambda body, topic_name: print(topic_name, body))
"""

from __future__ import annotations

import functools
import signal
import threading
from typing import Any, Callable, Dict, List, Optional

from .config import SubscriberConfig
from .constants import DEFAULT_OPTIONS
from .contracts import QueueClientProto
from .deadlines import call_with_deadline
from .dispatch import ForkDispatcher, resolve_dispatcher
from .errors import ConfigurationError, SubscribeError
from .io_sqs import CONNECTION_ERRORS, RawMessage, SQSClient
from .locks import MemoryLock, resolve_lock, with_lock
from .logging import get_logger
from .message import AckToken, Message

Handler = Callable[..., Any]

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Subscriber:
    DEFAULT_OPTIONS = DEFAULT_OPTIONS

    def __init__(
        self,
        config: SubscriberConfig,
        queue_client: Optional[QueueClientProto] = None,
        logger=None,
        **options: Any,
    ):
        unknown = set(options) - set(DEFAULT_OPTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown subscriber options: {sorted(unknown)}")
        opts = {**DEFAULT_OPTIONS, **config.options, **options}

        self.config = config
        self.logger = logger or get_logger("subscriber", level=config.log_level)
        self._subscribed = threading.Event()

        self.lock = resolve_lock(opts["lock"], config.lock_strategy)
        self.dispatcher = resolve_dispatcher(
            opts["dispatch"],
            config.async_strategy,
            max_workers=config.max_workers,
            on_exit=config.on_async_exit,
            logger=self.logger,
        )
        if isinstance(self.dispatcher, ForkDispatcher) and isinstance(self.lock, MemoryLock):
            # children would each lock their own copy of the store
            raise ConfigurationError(
                "fork dispatch needs a lock shared across processes (RedisLock) or lock=False"
            )

        self.timeout = _number_option(opts, "timeout", minimum=0, optional=True)
        self.wait_time = int(_number_option(opts, "wait_time", minimum=0, inclusive=True))
        self.batch_size = int(_number_option(opts, "batch_size", minimum=1, inclusive=True))
        self.ignore_visibility_timeout = bool(opts["ignore_visibility_timeout"])
        self.auto_delete = bool(opts["auto_delete"])
        self.before_message = opts["before_message"]
        self.visibility_heartbeat = _number_option(opts, "visibility_heartbeat", minimum=0, optional=True)

        self.queue_client = queue_client or SQSClient.from_config(config)
        self.queue = self.queue_client.get_queue_url(config.queue_name)

    # ------------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------------

    @property
    def subscribed(self) -> bool:
        return self._subscribed.is_set()

    def subscribe(self, handler: Optional[Handler] = None) -> None:
        """Poll until stopped. Blocks the calling thread."""
        if handler is None:
            raise ValueError("handler required")
        if not self.config.can_subscribe():
            raise ConfigurationError("AWS configuration is not set")

        self.logger.info("Subscribing to queue", {"queue": self.queue, "dispatch": self.dispatcher.name})

        self._subscribed.set()
        previous = self._trap_signals()
        try:
            self._poll(handler)
        except CONNECTION_ERRORS as e:
            self.logger.error(f"Connection error to queue: {self.queue}: {e}")
            raise SubscribeError(str(e)) from e
        finally:
            self._subscribed.clear()
            self._restore_signals(previous)
            self.dispatcher.shutdown(wait=True)

        self.logger.info("Unsubscribed from queue", {"queue": self.queue})

    def unsubscribe(self) -> None:
        """Request a graceful stop; observed before the next poll."""
        self._subscribed.clear()

    def change_message_visibility(self, message: Message, timeout: int = 0) -> None:
        self.logger.info(
            f"Retrying message now by making the visibility timeout {timeout} seconds",
            {"message_id": message.id},
        )
        self.queue_client.change_visibility(self.queue, message.receipt_handle, timeout)

    def delete_messages(self, entries: List[AckToken]) -> List[str]:
        """Delete messages by ack token (for auto_delete=False). Returns failed ids."""
        self.logger.info(
            f"Removing messages [{', '.join(e['id'] for e in entries)}] from queue"
        )
        return self.queue_client.delete_message_batch(self.queue, entries)

    # ------------------------------------------------------------------------
    # POLLING
    # ------------------------------------------------------------------------

    def _poll(self, handler: Handler) -> None:
        while True:
            if not self.subscribed:
                self.logger.info("Interrupt received, unsubscribing from queue...")
                return

            messages = self.queue_client.receive_messages(
                self.queue,
                max_messages=self.batch_size,
                wait_seconds=self.wait_time,
            )
            self._process_messages(messages, handler)
            self.dispatcher.flush()

    def _process_messages(self, messages: List[RawMessage], handler: Handler) -> None:
        for raw in messages:
            self.dispatcher.process(functools.partial(self._process_message, raw, handler))

    # ------------------------------------------------------------------------
    # PER-MESSAGE PROCESSING
    # ------------------------------------------------------------------------

    def _process_message(self, raw: RawMessage, handler: Handler) -> None:
        message: Optional[Message] = None
        log = self.logger
        try:
            message = Message.from_raw(raw)
            log = self.logger.bind(message_id=message.id, topic=message.topic_name)
            log.info("Processing message")

            handled = with_lock(
                self.lock,
                message.id,
                functools.partial(self._handle_message_with_middleware, message, handler, log),
            )
            if not handled:
                log.info("Ignoring duplicate message")
        except Exception as e:
            if message is not None and self.ignore_visibility_timeout:
                self._reset_visibility(message, log)
            log.error(e, {"context": "process_message"})

            if self.config.error_handler:
                self.config.error_handler(e)

    def _handle_message_with_middleware(self, message: Message, handler: Handler, log) -> None:
        def inner() -> None:
            self._handle_message(message, handler, log)
            if self.auto_delete:
                self._delete_message(message, log)

        self.config.middleware.invoke(message.topic_name, message.body, inner)

    def _handle_message(self, message: Message, handler: Handler, log) -> None:
        def call() -> Any:
            if self.before_message:
                self.before_message(message)
            if self.auto_delete:
                return handler(message.body, message.topic_name)
            return handler(message.body, message.topic_name, message.ack_token())

        try:
            if self.visibility_heartbeat:
                with self.queue_client.visibility_heartbeat(
                    self.queue, message.receipt_handle, int(self.visibility_heartbeat)
                ):
                    call_with_deadline(call, self.timeout)
            else:
                call_with_deadline(call, self.timeout)
        except Exception as e:
            log.error(f"Error handling message: {e}")
            raise

    def _delete_message(self, message: Message, log) -> None:
        log.info("Removing message from queue")
        self.queue_client.delete_message(self.queue, message.receipt_handle)

    def _reset_visibility(self, message: Message, log) -> None:
        try:
            self.change_message_visibility(message, 0)
        except CONNECTION_ERRORS as e:
            log.warning("Visibility reset failed", {"error": str(e)})

    # ------------------------------------------------------------------------
    # SIGNALS
    # ------------------------------------------------------------------------

    def _trap_signals(self) -> Dict[int, Any]:
        """Install stop handlers (main thread only); returns the previous ones."""
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("Not on the main thread, stop signals not trapped")
            return {}
        return {sig: signal.signal(sig, self._on_stop_signal) for sig in STOP_SIGNALS}

    def _on_stop_signal(self, signum, frame) -> None:
        self._subscribed.clear()

    @staticmethod
    def _restore_signals(previous: Dict[int, Any]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _number_option(opts: Dict[str, Any], name: str, minimum: float,
                   inclusive: bool = False, optional: bool = False) -> Any:
    """Validate a numeric option; `optional` lets None through (feature off)."""
    value = opts[name]
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"Option `{name}` must be a number, got {value!r}")
    if value < minimum or (value == minimum and not inclusive):
        bound = ">=" if inclusive else ">"
        raise ConfigurationError(f"Option `{name}` must be {bound} {minimum}, got {value!r}")
    return value


__all__ = ["Subscriber", "Handler"]
