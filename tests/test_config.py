"""Tests for configuration loading."""

from pathlib import Path

from webwallet_core.config import WebwalletConfig, get_config, load_yaml_config


def test_defaults():
    config = WebwalletConfig()

    assert config.rpc_port == 14007
    assert config.rpc_path == "/json_rpc"
    assert config.readiness_timeout_seconds == 5.0
    assert config.readiness_attempt_timeout_seconds == 0.1
    assert config.volume_suffix == ".wallet"
    assert config.password_flag == "--container-password"


def test_yaml_overlay(tmp_path, monkeypatch):
    config_file = tmp_path / "webwallet.yaml"
    config_file.write_text("network: wallets\nwatcher_poll_interval_seconds: 2.5\n")
    monkeypatch.setenv("WEBWALLET_CONFIG_FILE", str(config_file))

    config = get_config()

    assert config.network == "wallets"
    assert config.watcher_poll_interval_seconds == 2.5
    assert get_config() is config


def test_env_overrides_yaml(tmp_path, monkeypatch):
    config_file = tmp_path / "webwallet.yaml"
    config_file.write_text("network: from-yaml\n")
    monkeypatch.setenv("WEBWALLET_CONFIG_FILE", str(config_file))
    monkeypatch.setenv("WEBWALLET_NETWORK", "from-env")

    assert get_config().network == "from-env"


def test_missing_yaml_is_empty(tmp_path):
    assert load_yaml_config(tmp_path / "nope.yaml") == {}


def test_bundled_yaml_loads():
    bundled = Path(__file__).parent.parent / "config" / "webwallet.yaml"
    values = load_yaml_config(bundled)

    assert values["rpc_port"] == 14007
    WebwalletConfig(**values)
