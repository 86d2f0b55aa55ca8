"""Client configuration for pysmartair."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pysmartair._constants import BASE_URL, HISTORY_PATH, LATEST_PATH, MQTT_TOPIC_PREFIX
from pysmartair.exceptions import SmartAirConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class SmartAirConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Backend base URL serving ``/api/airquality/*``.
    latest_path : str
        Path of the "latest observations" endpoint.
    history_path : str
        Path of the history endpoint (oldest to newest).
    request_timeout : float
        Total timeout in seconds for a single HTTP request.
    push_enabled : bool
        Try the MQTT push channel before falling back to polling.
    mqtt_host : str
        MQTT broker host.
    mqtt_port : int
        MQTT broker port.
    mqtt_tls : bool
        Wrap the MQTT connection in TLS.
    mqtt_username : str or None
        MQTT username, if the broker requires one.
    mqtt_password : str or None
        MQTT password.
    mqtt_topic_prefix : str
        Root of the event, location and RPC topics.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    connect_timeout : float
        Seconds to wait for the broker CONNACK.
    invoke_timeout : float
        Seconds to wait for an RPC reply over MQTT.
    poll_interval : float
        Seconds between polls of the latest endpoint while degraded.
    reconnect_attempts : int
        Push connect attempts before falling back to polling.
    reconnect_base_delay : float
        First backoff delay in seconds; doubles per attempt.
    reconnect_max_delay : float
        Upper bound for a single backoff delay.
    probe_interval : float
        Seconds between push probes while polling.
    history_cap : int
        Size of the rolling observation history.
    alert_cap : int
        Number of recent alerts retained.
    alert_on_moderate : bool
        Also raise alerts for the moderate AQI band (51-100).
    stale_after : float
        Seconds without an accepted observation before the status reports
        ``waiting_for_data``. ``0`` disables the indicator.
    seed_history : bool
        Load the history endpoint into the reconciler on initialize.
    """

    base_url: str = BASE_URL
    latest_path: str = LATEST_PATH
    history_path: str = HISTORY_PATH
    request_timeout: float = 10.0
    push_enabled: bool = True
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_tls: bool = False
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_topic_prefix: str = MQTT_TOPIC_PREFIX
    mqtt_keepalive: int = 60
    connect_timeout: float = 10.0
    invoke_timeout: float = 8.0
    poll_interval: float = 10.0
    reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    probe_interval: float = 30.0
    history_cap: int = 20
    alert_cap: int = 5
    alert_on_moderate: bool = False
    stale_after: float = 60.0
    seed_history: bool = True

    def validate(self) -> SmartAirConfig:
        """Raise :class:`SmartAirConfigError` if any value is unusable."""
        if self.history_cap < 1:
            raise SmartAirConfigError(f"history_cap must be >= 1, got {self.history_cap}")
        if self.alert_cap < 1:
            raise SmartAirConfigError(f"alert_cap must be >= 1, got {self.alert_cap}")
        if self.reconnect_attempts < 1:
            raise SmartAirConfigError(f"reconnect_attempts must be >= 1, got {self.reconnect_attempts}")
        for name in ("poll_interval", "probe_interval", "connect_timeout", "invoke_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise SmartAirConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.reconnect_base_delay < 0 or self.reconnect_max_delay < 0:
            raise SmartAirConfigError("reconnect delays must be >= 0")
        if self.stale_after < 0:
            raise SmartAirConfigError(f"stale_after must be >= 0, got {self.stale_after}")
        return self

    @property
    def latest_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.latest_path}"

    @property
    def history_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.history_path}"

    @classmethod
    def from_env(cls, **overrides: Any) -> SmartAirConfig:
        """Create configuration from environment variables.

        Reads optional ``SMARTAIR_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SmartAirConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "SMARTAIR_BASE_URL": "base_url",
            "SMARTAIR_LATEST_PATH": "latest_path",
            "SMARTAIR_HISTORY_PATH": "history_path",
            "SMARTAIR_MQTT_HOST": "mqtt_host",
            "SMARTAIR_MQTT_USERNAME": "mqtt_username",
            "SMARTAIR_MQTT_PASSWORD": "mqtt_password",
            "SMARTAIR_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
        }
        _ENV_INT_MAP = {
            "SMARTAIR_MQTT_PORT": "mqtt_port",
            "SMARTAIR_MQTT_KEEPALIVE": "mqtt_keepalive",
            "SMARTAIR_RECONNECT_ATTEMPTS": "reconnect_attempts",
            "SMARTAIR_HISTORY_CAP": "history_cap",
            "SMARTAIR_ALERT_CAP": "alert_cap",
        }
        _ENV_FLOAT_MAP = {
            "SMARTAIR_REQUEST_TIMEOUT": "request_timeout",
            "SMARTAIR_CONNECT_TIMEOUT": "connect_timeout",
            "SMARTAIR_INVOKE_TIMEOUT": "invoke_timeout",
            "SMARTAIR_POLL_INTERVAL": "poll_interval",
            "SMARTAIR_RECONNECT_BASE_DELAY": "reconnect_base_delay",
            "SMARTAIR_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "SMARTAIR_PROBE_INTERVAL": "probe_interval",
            "SMARTAIR_STALE_AFTER": "stale_after",
        }
        _ENV_BOOL_MAP = {
            "SMARTAIR_PUSH_ENABLED": ("push_enabled", True),
            "SMARTAIR_MQTT_TLS": ("mqtt_tls", False),
            "SMARTAIR_ALERT_ON_MODERATE": ("alert_on_moderate", False),
            "SMARTAIR_SEED_HISTORY": ("seed_history", True),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise SmartAirConfigError(f"Invalid numeric environment value: {exc}") from exc

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
