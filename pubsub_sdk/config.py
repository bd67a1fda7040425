"""
Configuration loader.
Merges a YAML file + environment variables into a typed SubscriberConfig.
The resulting object is passed explicitly to Subscriber; nothing in the
engine reads configuration from globals.

Example config/subscriber.yaml:

    aws:
      region: eu-west-1
      endpoint_url: http://localhost:4566   # optional (local emulator)
    subscriber:
      queue_name: orders-service
      async_strategy: thread
      max_workers: 8
      lock: {strategy: redis, url: "redis://cache:6379/0", hard_ttl: 86400}
      options: {timeout: 30, batch_size: 5, ignore_visibility_timeout: true}
    logging:
      level: INFO
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import yaml

from .constants import (
    CONFIG_PATH_ENV,
    DEFAULT_DISPATCH_STRATEGY,
    DEFAULT_MAX_WORKERS,
    DEFAULT_OPTIONS,
    ENV_OVERRIDES,
)
from .dispatch import validate_strategy_name
from .errors import ConfigurationError
from .locks import LockBase, MemoryLock, build_lock
from .logging import LEVELS
from .middleware import Chain


# ============================================================================
# CONFIG SCHEMA
# ============================================================================

@dataclass
class SubscriberConfig:
    """
    Complete subscriber configuration.
    `options` overrides Subscriber.DEFAULT_OPTIONS for every subscriber
    built from this config; constructor keywords override both.
    """
    queue_name: str = ""
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None  # for LocalStack/ElasticMQ
    lock_strategy: LockBase = field(default_factory=MemoryLock)
    async_strategy: str = DEFAULT_DISPATCH_STRATEGY
    max_workers: int = DEFAULT_MAX_WORKERS
    error_handler: Optional[Callable[[BaseException], Any]] = None
    on_async_exit: Optional[Callable[[], Any]] = None
    middleware: Chain = field(default_factory=Chain)
    log_level: str = "INFO"
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        validate_strategy_name(self.async_strategy)
        if not isinstance(self.lock_strategy, LockBase):
            raise ConfigurationError("lock_strategy must be a LockBase instance")
        if self.log_level.upper() not in LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.log_level}")
        unknown = set(self.options) - set(DEFAULT_OPTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown subscriber options: {sorted(unknown)}")

    def aws_options(self) -> Dict[str, Optional[str]]:
        return {
            "aws_access_key_id": self.access_key,
            "aws_secret_access_key": self.secret_key,
            "region": self.region,
        }

    def can_subscribe(self) -> bool:
        """True when every credential value is present and non-empty."""
        return all(value for value in self.aws_options().values())


# ============================================================================
# LOADING FUNCTIONS
# ============================================================================

def load_config(path: Optional[str] = None, **overrides: Any) -> SubscriberConfig:
    """
    Main entry point.

    Priority (highest to lowest):
    1. keyword overrides (e.g. error_handler=..., middleware=...)
    2. Environment variables
    3. YAML file (explicit path, else $PUBSUB_CONFIG, else none)

    Raises:
        ConfigurationError if the file is invalid or values are invalid
    """
    path = path or os.environ.get(CONFIG_PATH_ENV)
    raw = load_yaml_file(path) if path else {}
    raw = merge_configs(raw, load_env_vars())
    return parse_config(raw, **overrides)


def load_yaml_file(filepath: str) -> Dict[str, Any]:
    """
    Parse a single YAML file.
    Missing file is not an error (returns {}); invalid YAML is.
    """
    if not os.path.exists(filepath):
        return {}
    try:
        with open(filepath, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {filepath}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {filepath}")
    return data


def load_env_vars(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Map set environment variables onto the YAML layout."""
    environ = os.environ if environ is None else environ
    out: Dict[str, Any] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            out.setdefault(section, {})[key] = value
    return out


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge config dicts; later ones win.

    Example:
        merge_configs({"aws": {"region": "a"}}, {"aws": {"region": "b"}})
        # {"aws": {"region": "b"}}
    """
    result: Dict[str, Any] = {}
    for cfg in configs:
        for key, value in (cfg or {}).items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            else:
                result[key] = copy.deepcopy(value)
    return result


def parse_config(raw: Dict[str, Any], **overrides: Any) -> SubscriberConfig:
    """Convert the merged dict into a SubscriberConfig."""
    aws = _section(raw, "aws")
    sub = _section(raw, "subscriber")
    log = _section(raw, "logging")

    kwargs: Dict[str, Any] = {
        "queue_name": str(sub.get("queue_name") or ""),
        "access_key": aws.get("access_key"),
        "secret_key": aws.get("secret_key"),
        "region": aws.get("region") or "us-east-1",
        "endpoint_url": aws.get("endpoint_url"),
        "async_strategy": str(sub.get("async_strategy") or DEFAULT_DISPATCH_STRATEGY),
        "max_workers": _positive_int(sub.get("max_workers", DEFAULT_MAX_WORKERS), "subscriber.max_workers"),
        "log_level": str(log.get("level") or "INFO").upper(),
        "options": dict(sub.get("options") or {}),
    }
    if "lock" in sub:
        kwargs["lock_strategy"] = build_lock(sub["lock"])

    kwargs.update(overrides)
    try:
        return SubscriberConfig(**kwargs)
    except TypeError as e:
        raise ConfigurationError(str(e)) from e


# ============================================================================
# HELPERS
# ============================================================================

def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"`{name}` must be a mapping")
    return value


def _positive_int(value: Any, name: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer") from e
    if n <= 0:
        raise ConfigurationError(f"{name} must be positive")
    return n


__all__ = [
    "SubscriberConfig",
    "load_config",
    "load_yaml_file",
    "load_env_vars",
    "merge_configs",
    "parse_config",
]
