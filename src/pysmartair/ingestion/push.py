"""MQTT push transport.

Topic layout under ``<prefix>``:

- ``<prefix>/events/<EventName>`` server broadcasts
  (``NewAirQualityData``, ``AirQualityUpdate``, ``AirQualityAlert``,
  ``DeviceStatusChanged``);
- ``<prefix>/location/<group>/<EventName>`` broadcasts for one location
  group, subscribed on ``JoinLocationGroup``;
- ``<prefix>/rpc/request`` and ``<prefix>/rpc/response/<clientId>`` for
  ``invoke`` round-trips correlated by ``requestId``.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from typing import Any, Protocol

from pysmartair._constants import Command, PushEvent
from pysmartair._mqtt import MqttMessage, MqttRuntime, MqttSettings, build_client_id
from pysmartair._redact import redact_for_log
from pysmartair._transport import ConnectionHandle
from pysmartair.bus import SubscriptionBus
from pysmartair.config import SmartAirConfig
from pysmartair.exceptions import SmartAirTransportError
from pysmartair.models.status import TransportKind

_logger = logging.getLogger(__name__)


class _Runtime(Protocol):
    @property
    def is_running(self) -> bool: ...

    def start(self, settings: MqttSettings) -> None: ...

    def subscribe(self, topic: str) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def publish(self, topic: str, payload: dict[str, Any]) -> None: ...

    def stop(self) -> None: ...


RuntimeFactory = Callable[..., _Runtime]


def event_name_for(topic: str, payload: dict[str, Any]) -> str:
    """Event name from the payload's ``event`` field, else the last topic segment."""
    name = payload.get("event")
    if isinstance(name, str) and name:
        return name
    return topic.rsplit("/", 1)[-1]


def event_body(payload: dict[str, Any]) -> Any:
    """Unwrap ``{"event": ..., "data": ...}`` envelopes; bare documents pass through."""
    if "event" in payload and "data" in payload:
        return payload["data"]
    return payload


class PushTransport:
    """Push-based variant of the transport interface."""

    def __init__(
        self,
        config: SmartAirConfig,
        *,
        runtime_factory: RuntimeFactory = MqttRuntime,
    ) -> None:
        self._config = config
        self._runtime_factory = runtime_factory
        self._handlers = SubscriptionBus()
        self._runtime: _Runtime | None = None
        self._handle: ConnectionHandle | None = None
        self._client_id = build_client_id("pysmartair")
        self._groups: set[str] = set()
        self._rpc_waiters: dict[str, asyncio.Future[Any]] = {}
        self._stop_tasks: set[asyncio.Task[None]] = set()

    @property
    def kind(self) -> TransportKind:
        return TransportKind.PUSH

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def _prefix(self) -> str:
        return self._config.mqtt_topic_prefix.strip("/")

    @property
    def response_topic(self) -> str:
        return f"{self._prefix}/rpc/response/{self._client_id}"

    def _group_topic(self, group: str) -> str:
        return f"{self._prefix}/location/{group}/+"

    def on(self, event_name: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        return self._handlers.subscribe(event_name, handler)

    async def connect(self) -> ConnectionHandle:
        """Start the MQTT runtime and wait for the broker's CONNACK."""
        if self._handle is not None:
            return self._handle

        loop = asyncio.get_running_loop()
        acked: asyncio.Future[tuple[bool, str]] = loop.create_future()
        runtime: _Runtime | None = None
        abandoned = False

        def on_connect(ok: bool, reason: str) -> None:
            if not acked.done():
                acked.set_result((ok, reason))

        def on_disconnect(reason: str) -> None:
            if runtime is not None and runtime is self._runtime:
                self._handle_connection_lost(reason)

        def on_message(message: MqttMessage) -> None:
            if not abandoned:
                self._on_message(message)

        runtime = self._runtime_factory(
            loop=loop,
            on_message=on_message,
            on_connect=on_connect,
            on_disconnect=on_disconnect,
            logger=_logger,
        )
        settings = MqttSettings(
            host=self._config.mqtt_host,
            port=self._config.mqtt_port,
            client_id=self._client_id,
            username=self._config.mqtt_username,
            password=self._config.mqtt_password,
            tls=self._config.mqtt_tls,
            keepalive=self._config.mqtt_keepalive,
            subscriptions=(
                f"{self._prefix}/events/+",
                self.response_topic,
                *(self._group_topic(group) for group in sorted(self._groups)),
            ),
        )

        starting = loop.run_in_executor(None, runtime.start, settings)
        try:
            await asyncio.shield(starting)
            ok, reason = await asyncio.wait_for(acked, self._config.connect_timeout)
        except (OSError, ValueError) as exc:
            abandoned = True
            await self._stop_runtime(runtime)
            raise SmartAirTransportError(
                f"MQTT connect to {settings.host}:{settings.port} failed: {exc!r}",
                endpoint=settings.host,
            ) from exc
        except TimeoutError as exc:
            abandoned = True
            await self._stop_runtime(runtime)
            raise SmartAirTransportError(
                f"MQTT connect to {settings.host}:{settings.port} timed out",
                endpoint=settings.host,
            ) from exc
        except asyncio.CancelledError:
            abandoned = True
            # start() may still be running on its executor thread; stop only after it returns.
            await self._stop_runtime(runtime, after=starting)
            raise

        if not ok:
            abandoned = True
            await self._stop_runtime(runtime)
            raise SmartAirTransportError(f"MQTT broker refused connection: {reason}", endpoint=settings.host)

        self._runtime = runtime
        self._handle = ConnectionHandle(kind=TransportKind.PUSH, connection_id=self._client_id)
        _logger.debug("Push transport connected client_id=%s", self._client_id)
        return self._handle

    async def disconnect(self) -> None:
        runtime = self._runtime
        self._runtime = None
        self._handle = None
        self._fail_rpc_waiters("transport disconnected")
        await self._stop_runtime(runtime)
        if self._stop_tasks:
            await asyncio.gather(*self._stop_tasks, return_exceptions=True)

    async def invoke(self, command: str, *args: Any) -> Any:
        if command == Command.JOIN_LOCATION_GROUP:
            group = self._require_group(command, args)
            self._groups.add(group)
            if self._runtime is not None:
                self._runtime.subscribe(self._group_topic(group))
            return {"success": True}
        if command == Command.LEAVE_LOCATION_GROUP:
            group = self._require_group(command, args)
            self._groups.discard(group)
            if self._runtime is not None:
                self._runtime.unsubscribe(self._group_topic(group))
            return {"success": True}
        return await self._rpc(command, list(args))

    @staticmethod
    def _require_group(command: str, args: tuple[Any, ...]) -> str:
        if not args or not isinstance(args[0], str) or not args[0].strip():
            raise SmartAirTransportError(f"{command} requires a location group name", endpoint=command)
        return args[0].strip()

    async def _rpc(self, command: str, args: list[Any]) -> Any:
        runtime = self._runtime
        if runtime is None or not runtime.is_running:
            raise SmartAirTransportError(f"Cannot invoke {command}: push transport not connected", endpoint=command)

        request_id = secrets.token_hex(8)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._rpc_waiters[request_id] = future
        try:
            runtime.publish(
                f"{self._prefix}/rpc/request",
                {"requestId": request_id, "command": command, "args": args, "replyTo": self.response_topic},
            )
            return await asyncio.wait_for(future, self._config.invoke_timeout)
        except TimeoutError as exc:
            raise SmartAirTransportError(f"{command} timed out", endpoint=command) from exc
        except RuntimeError as exc:
            raise SmartAirTransportError(f"Cannot invoke {command}: {exc}", endpoint=command) from exc
        finally:
            self._rpc_waiters.pop(request_id, None)

    def _on_message(self, message: MqttMessage) -> None:
        if message.topic == self.response_topic:
            self._resolve_rpc(message.payload)
            return
        name = event_name_for(message.topic, message.payload)
        _logger.debug("Push event %s topic=%s payload=%s", name, message.topic, redact_for_log(message.payload))
        self._handlers.publish(name, event_body(message.payload))

    def _resolve_rpc(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("requestId")
        waiter = self._rpc_waiters.get(request_id) if isinstance(request_id, str) else None
        if waiter is None or waiter.done():
            _logger.debug("Unmatched RPC reply requestId=%s", request_id)
            return
        error = payload.get("error")
        if error:
            waiter.set_exception(SmartAirTransportError(f"Remote error: {error}", endpoint="rpc"))
        else:
            waiter.set_result(payload.get("result"))

    def _handle_connection_lost(self, reason: str) -> None:
        runtime = self._runtime
        self._runtime = None
        self._handle = None
        self._fail_rpc_waiters(f"connection lost: {reason}")
        if runtime is not None:
            # The network thread may still be unwinding; stop it off-loop.
            task = asyncio.get_running_loop().create_task(self._stop_runtime(runtime))
            self._stop_tasks.add(task)
            task.add_done_callback(self._stop_tasks.discard)
        _logger.debug("Push connection lost: %s", reason)
        self._handlers.publish(PushEvent.CONNECTION_LOST, {"reason": reason})

    def _fail_rpc_waiters(self, reason: str) -> None:
        for waiter in self._rpc_waiters.values():
            if not waiter.done():
                waiter.set_exception(SmartAirTransportError(reason, endpoint="rpc"))
        self._rpc_waiters.clear()

    @staticmethod
    async def _stop_runtime(runtime: _Runtime | None, *, after: asyncio.Future[Any] | None = None) -> None:
        if runtime is None:
            return
        if after is not None:
            try:
                await after
            except Exception:
                _logger.debug("MQTT runtime start failed while cancelling", exc_info=True)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)
