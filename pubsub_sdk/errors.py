"""Typed errors raised by the subscriber SDK."""

from __future__ import annotations


class PubSubError(Exception):
    """Base class for every error the SDK raises on purpose."""


class ConfigurationError(PubSubError):
    """Invalid or incomplete configuration (fatal, raised before polling)."""


class LockConfigurationError(ConfigurationError):
    """The `lock` option is not True, False or a LockBase instance."""


class QueueNotFoundError(PubSubError):
    """Queue name could not be resolved to a URL."""

    def __init__(self, queue_name: str, message: str = ""):
        self.queue_name = queue_name
        super().__init__(message or f"Queue not found: {queue_name}")


class SubscribeError(PubSubError):
    """Provider connection failure while polling; ends the subscribe call."""


class HandlerTimeoutError(PubSubError, TimeoutError):
    """Handler did not return control before its deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Handler exceeded timeout of {timeout}s")


__all__ = [
    "PubSubError",
    "ConfigurationError",
    "LockConfigurationError",
    "QueueNotFoundError",
    "SubscribeError",
    "HandlerTimeoutError",
]
