import argparse
import importlib
import os
import sys
from typing import List, Optional

from .config import load_config
from .constants import DEFAULT_HOOKS_PATH
from .contracts import Ctx, SubscriberHooks
from .errors import ConfigurationError, PubSubError
from .logging import get_logger, set_level
from .subscriber import Subscriber


# ==========================================================
# Helpers
# ==========================================================

def load_hooks(hooks_path: str) -> SubscriberHooks:
    """Import and instantiate a hooks class given as 'package.module.Class'."""
    if "." not in hooks_path:
        raise ConfigurationError(f"Invalid hooks path: {hooks_path}")
    mod, cls = hooks_path.rsplit(".", 1)
    try:
        hooks_cls = getattr(importlib.import_module(mod), cls)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load hooks {hooks_path}: {e}") from e
    hooks = hooks_cls()
    if not isinstance(hooks, SubscriberHooks):
        raise ConfigurationError(f"{hooks_path} must subclass SubscriberHooks")
    return hooks


def _overrides(hooks: SubscriberHooks, name: str) -> bool:
    return getattr(type(hooks), name) is not getattr(SubscriberHooks, name)


# ==========================================================
# Core Runner Logic
# ==========================================================

def run(config_path: Optional[str] = None, hooks_path: str = DEFAULT_HOOKS_PATH,
        log_level: Optional[str] = None) -> None:
    """
    Load config + hooks and subscribe until stopped.

    Args:
        config_path: YAML config (default: $PUBSUB_CONFIG)
        hooks_path: hooks class path (default: service.hooks.ServiceHooks)
        log_level: overrides the configured level
    """
    hooks = load_hooks(hooks_path)
    overrides = {"error_handler": hooks.on_error} if _overrides(hooks, "on_error") else {}
    if log_level:
        overrides["log_level"] = log_level.upper()
    config = load_config(config_path, **overrides)
    set_level(config.log_level)

    logger = get_logger("runner", level=config.log_level)
    logger.info("Starting subscriber", {"queue_name": config.queue_name, "hooks_path": hooks_path})

    options = {"before_message": hooks.before_message} if _overrides(hooks, "before_message") else {}
    subscriber = Subscriber(config, logger=get_logger("subscriber", level=config.log_level), **options)

    hooks.setup(Ctx(config=config, queue=subscriber.queue_client, logger=logger))
    logger.info("Hooks ready ✓")

    subscriber.subscribe(hooks.handle)
    logger.info("Subscriber stopped")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="pubsub-subscribe", description="Consume a subscribed SQS queue.")
    parser.add_argument("--config", default=None, help="YAML config file (default: $PUBSUB_CONFIG)")
    parser.add_argument("--hooks", default=os.environ.get("HOOKS_PATH", DEFAULT_HOOKS_PATH),
                        help="hooks class, e.g. service.hooks.ServiceHooks")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args(argv)

    try:
        run(config_path=args.config, hooks_path=args.hooks, log_level=args.log_level)
    except PubSubError as e:
        get_logger("runner").error(e, {"context": "main"})
        return 1
    return 0


# ==========================================================
# Entrypoint
# ==========================================================

if __name__ == "__main__":
    sys.exit(main())
