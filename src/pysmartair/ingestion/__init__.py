"""Ingestion layer.

This package contains the transports that receive data from the
air-quality backend (MQTT push, HTTP polling) and the helpers that turn
their payloads into normalized domain objects.
"""

__all__: list[str] = []
