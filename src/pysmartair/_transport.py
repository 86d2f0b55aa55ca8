"""Transport interface and the shared JSON-over-HTTP helper."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import aiohttp

from pysmartair._constants import USER_AGENT
from pysmartair._redact import redact_for_log
from pysmartair.exceptions import SmartAirTransportError
from pysmartair.models.status import TransportKind

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConnectionHandle:
    """Returned by a successful ``Transport.connect``."""

    kind: TransportKind
    connection_id: str
    connected_at: datetime = field(default_factory=_utcnow)


class Transport(Protocol):
    """Capability set shared by the push and poll variants.

    Handlers registered with :meth:`on` receive the decoded JSON payload
    of the named event and run on the event loop.
    """

    @property
    def kind(self) -> TransportKind: ...

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> ConnectionHandle: ...

    async def disconnect(self) -> None: ...

    def on(self, event_name: str, handler: Callable[[Any], None]) -> Callable[[], None]: ...

    async def invoke(self, command: str, *args: Any) -> Any: ...


class JsonHttpClient:
    """GET JSON documents from the air-quality backend."""

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def get_json(self, url: str) -> Any:
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        _logger.debug("GET %s", url)

        try:
            async with self._http.get(url, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise SmartAirTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=url,
                    )
        except SmartAirTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise SmartAirTransportError(
                f"Request to {url} failed: {exc!r}",
                endpoint=url,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SmartAirTransportError(
                f"Invalid JSON from {url}: {text[:200]}",
                endpoint=url,
            ) from exc

        _logger.debug("GET %s -> %s", url, redact_for_log(body))
        return body
