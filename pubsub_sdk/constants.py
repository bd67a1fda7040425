"""
constants.py – subscriber defaults
Shared defaults for the subscription engine, lock strategies, dispatch
strategies and the SQS adapter.
"""

from typing import Any, Dict


# ============================================================================
# SUBSCRIBER DEFAULTS
# ============================================================================

DEFAULT_OPTIONS: Dict[str, Any] = {
    "lock": True,
    "dispatch": False,
    "timeout": 15,                     # handler wall-clock seconds
    "wait_time": 10,                   # long-poll seconds
    "batch_size": 10,                  # messages per poll
    "ignore_visibility_timeout": False,
    "auto_delete": True,
    "before_message": None,
    "visibility_heartbeat": None,      # seconds, None disables
}

# ============================================================================
# LOCKS
# ============================================================================

DEFAULT_SOFT_TTL = 5 * 60          # processing in progress
DEFAULT_HARD_TTL = 24 * 60 * 60    # processed, suppress redelivery
LOCK_NAMESPACE = "pubsub:lock"
LOCK_STRATEGIES = ("memory", "redis", "noop")
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

# ============================================================================
# DISPATCH
# ============================================================================

DISPATCH_STRATEGIES = ("inline", "thread", "fork")
DEFAULT_DISPATCH_STRATEGY = "thread"
DEFAULT_MAX_WORKERS = 10

# ============================================================================
# SQS
# ============================================================================

SQS_MAX_BATCH = 10
SQS_MAX_WAIT_SECONDS = 20
SQS_MAX_VISIBILITY = 43_200  # 12h hard SQS limit
RETRY_ATTEMPTS = 5
RETRIABLE_ERROR_CODES = {
    "Throttling", "ThrottlingException", "ServiceUnavailable",
    "RequestThrottled", "InternalError", "InternalFailure",
    "RequestTimeout", "500", "502", "503", "504",
}
QUEUE_NOT_FOUND_CODES = {
    "AWS.SimpleQueueService.NonExistentQueue",
    "QueueDoesNotExist",
}
RECEIPT_INVALID_CODES = {"ReceiptHandleIsInvalid", "InvalidParameterValue"}

# ============================================================================
# ENVIRONMENT
# ============================================================================

CONFIG_PATH_ENV = "PUBSUB_CONFIG"

# env var -> (section, key) in the YAML layout
ENV_OVERRIDES = {
    "AWS_ACCESS_KEY_ID": ("aws", "access_key"),
    "AWS_SECRET_ACCESS_KEY": ("aws", "secret_key"),
    "AWS_REGION": ("aws", "region"),
    "PUBSUB_ENDPOINT_URL": ("aws", "endpoint_url"),
    "PUBSUB_QUEUE_NAME": ("subscriber", "queue_name"),
    "LOG_LEVEL": ("logging", "level"),
}

DEFAULT_HOOKS_PATH = "service.hooks.ServiceHooks"
