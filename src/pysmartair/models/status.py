"""Connection state models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    POLLING = "polling"
    RECONNECTING = "reconnecting"


class TransportKind(StrEnum):
    PUSH = "push"
    POLL = "poll"


class ConnectionStatus(BaseModel):
    """Point-in-time snapshot of the connection manager."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: ConnectionState
    is_enabled: bool
    transport: TransportKind | None = None
    connection_id: str | None = None
    reconnect_attempts: int = 0
    last_error: str | None = None
    last_ingest_at: datetime | None = None
    waiting_for_data: bool = False

    @property
    def is_connected(self) -> bool:
        """Whether the push channel is live."""
        return self.state == ConnectionState.CONNECTED

    @property
    def is_polling(self) -> bool:
        """Whether data currently arrives through the polling fallback."""
        return self.state == ConnectionState.POLLING
