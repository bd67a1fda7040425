"""Tests for configuration loading (YAML + env) and validation."""
import pytest

from pubsub_sdk.config import (
    SubscriberConfig,
    load_config,
    load_env_vars,
    load_yaml_file,
    merge_configs,
    parse_config,
)
from pubsub_sdk.errors import ConfigurationError, LockConfigurationError
from pubsub_sdk.locks import MemoryLock, NOOPLock
from pubsub_sdk.middleware import Chain

YAML = """
aws:
  access_key: AKIAFILE
  secret_key: file-secret
  region: eu-west-1
subscriber:
  queue_name: orders-service
  async_strategy: fork
  max_workers: 4
  lock: {strategy: noop}
  options: {timeout: 30, batch_size: 5}
logging:
  level: debug
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_REGION",
                "PUBSUB_ENDPOINT_URL", "PUBSUB_QUEUE_NAME", "LOG_LEVEL", "PUBSUB_CONFIG"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "subscriber.yaml"
    path.write_text(YAML)
    return path


# ──────────────────────────────────────────────────────────────
#  SubscriberConfig
# ──────────────────────────────────────────────────────────────

class TestSubscriberConfig:
    def test_defaults(self):
        config = SubscriberConfig()
        assert isinstance(config.lock_strategy, MemoryLock)
        assert isinstance(config.middleware, Chain)
        assert config.async_strategy == "thread"
        assert config.error_handler is None
        assert config.options == {}

    def test_instances_do_not_share_state(self):
        assert SubscriberConfig().middleware is not SubscriberConfig().middleware

    def test_can_subscribe(self):
        assert SubscriberConfig(access_key="a", secret_key="s", region="r").can_subscribe()
        assert not SubscriberConfig(access_key="a", secret_key="", region="r").can_subscribe()
        assert not SubscriberConfig(secret_key="s", region="r").can_subscribe()

    def test_invalid_async_strategy(self):
        with pytest.raises(ConfigurationError):
            SubscriberConfig(async_strategy="batch")

    def test_invalid_lock_strategy(self):
        with pytest.raises(ConfigurationError):
            SubscriberConfig(lock_strategy=True)

    def test_invalid_log_level(self):
        with pytest.raises(ConfigurationError):
            SubscriberConfig(log_level="LOUD")

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError):
            SubscriberConfig(options={"retries": 3})


# ──────────────────────────────────────────────────────────────
#  Loading
# ──────────────────────────────────────────────────────────────

class TestLoadConfig:
    def test_from_yaml(self, config_file):
        config = load_config(str(config_file))

        assert config.queue_name == "orders-service"
        assert config.access_key == "AKIAFILE"
        assert config.region == "eu-west-1"
        assert config.async_strategy == "fork"
        assert config.max_workers == 4
        assert isinstance(config.lock_strategy, NOOPLock)
        assert config.options == {"timeout": 30, "batch_size": 5}
        assert config.log_level == "DEBUG"

    def test_env_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "ap-south-1")
        monkeypatch.setenv("PUBSUB_QUEUE_NAME", "invoices-service")
        config = load_config(str(config_file))
        assert config.region == "ap-south-1"
        assert config.queue_name == "invoices-service"
        assert config.access_key == "AKIAFILE"

    def test_path_from_env(self, config_file, monkeypatch):
        monkeypatch.setenv("PUBSUB_CONFIG", str(config_file))
        assert load_config().queue_name == "orders-service"

    def test_keyword_overrides(self, config_file):
        errors = []
        config = load_config(str(config_file), error_handler=errors.append)
        assert config.error_handler == errors.append

    def test_env_only(self, monkeypatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIAENV")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "env-secret")
        config = load_config()
        assert config.can_subscribe()
        assert config.region == "us-east-1"

    def test_invalid_lock_in_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("subscriber:\n  lock: {strategy: memcache}\n")
        with pytest.raises(LockConfigurationError):
            load_config(str(path))

    def test_unknown_override(self):
        with pytest.raises(ConfigurationError):
            load_config(unknown_field=1)


class TestYaml:
    def test_missing_file(self, tmp_path):
        assert load_yaml_file(str(tmp_path / "nope.yaml")) == {}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_file(str(path)) == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("aws: [unterminated\n")
        with pytest.raises(ConfigurationError):
            load_yaml_file(str(path))

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_yaml_file(str(path))


# ──────────────────────────────────────────────────────────────
#  Helpers
# ──────────────────────────────────────────────────────────────

def test_load_env_vars_ignores_empty():
    env = {"AWS_REGION": "eu-central-1", "LOG_LEVEL": ""}
    assert load_env_vars(env) == {"aws": {"region": "eu-central-1"}}


def test_merge_configs_is_deep():
    merged = merge_configs(
        {"aws": {"region": "a", "access_key": "k"}},
        {"aws": {"region": "b"}, "logging": {"level": "DEBUG"}},
    )
    assert merged == {"aws": {"region": "b", "access_key": "k"}, "logging": {"level": "DEBUG"}}


@pytest.mark.parametrize("raw", [
    {"aws": "eu-west-1"},
    {"subscriber": {"max_workers": 0}},
    {"subscriber": {"max_workers": "many"}},
])
def test_parse_config_rejects(raw):
    with pytest.raises(ConfigurationError):
        parse_config(raw)
