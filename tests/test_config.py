from __future__ import annotations

import pytest

from pysmartair.config import SmartAirConfig
from pysmartair.exceptions import SmartAirConfigError


def test_defaults_are_valid() -> None:
    config = SmartAirConfig().validate()

    assert config.history_cap == 20
    assert config.alert_cap == 5
    assert config.probe_interval == 30.0
    assert config.latest_url == "http://localhost:5000/api/airquality/latest"
    assert config.history_url == "http://localhost:5000/api/airquality/history"


def test_urls_tolerate_trailing_slash() -> None:
    config = SmartAirConfig(base_url="https://air.example.com/")
    assert config.latest_url == "https://air.example.com/api/airquality/latest"


@pytest.mark.parametrize(
    "overrides",
    [
        {"history_cap": 0},
        {"alert_cap": 0},
        {"reconnect_attempts": 0},
        {"poll_interval": 0},
        {"probe_interval": -1},
        {"reconnect_base_delay": -0.5},
        {"stale_after": -1},
    ],
)
def test_validate_rejects_unusable_values(overrides: dict[str, object]) -> None:
    with pytest.raises(SmartAirConfigError):
        SmartAirConfig(**overrides).validate()  # type: ignore[arg-type]


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMARTAIR_BASE_URL", "http://backend:8080")
    monkeypatch.setenv("SMARTAIR_MQTT_PORT", "8883")
    monkeypatch.setenv("SMARTAIR_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("SMARTAIR_MQTT_TLS", "yes")
    monkeypatch.setenv("SMARTAIR_PUSH_ENABLED", "off")

    config = SmartAirConfig.from_env()

    assert config.base_url == "http://backend:8080"
    assert config.mqtt_port == 8883
    assert config.poll_interval == 2.5
    assert config.mqtt_tls is True
    assert config.push_enabled is False


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMARTAIR_HISTORY_CAP", "50")
    monkeypatch.setenv("SMARTAIR_SEED_HISTORY", "0")

    config = SmartAirConfig.from_env(history_cap=7, seed_history=True)

    assert config.history_cap == 7
    assert config.seed_history is True


def test_from_env_unknown_bool_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMARTAIR_PUSH_ENABLED", "maybe")
    assert SmartAirConfig.from_env().push_enabled is True


def test_from_env_invalid_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMARTAIR_MQTT_PORT", "not-a-port")
    with pytest.raises(SmartAirConfigError):
        SmartAirConfig.from_env()
