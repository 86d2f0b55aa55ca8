#!/usr/bin/env python3
"""Live probe for the air-quality stream.

Connects with ``SmartAirConfig.from_env()`` (push first, polling as a
fallback) and prints reconciled observations, alerts and connection
status changes until ``--duration`` elapses or Ctrl+C.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pysmartair import (  # noqa: E402
    Alert,
    Category,
    ConnectionStatus,
    ObservationEvent,
    SmartAirClient,
    SmartAirConfig,
    SmartAirError,
)

_LOG = logging.getLogger("stream_probe")


@dataclass
class ProbeStats:
    started_at: float
    observations: int = 0
    alerts: int = 0
    status_changes: int = 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print the live air-quality stream.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the full raw payload of each observation.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _format_observation(event: ObservationEvent) -> str:
    aqi = event.effective_aqi
    aqi_text = "n/a" if aqi is None else f"{aqi:.0f}"
    metrics = " ".join(
        f"{pollutant}={reading.value:g}" for pollutant, reading in event.metrics.items() if reading.value is not None
    )
    return f"{event.observed_at.isoformat()} station={event.station_id} aqi={aqi_text} {metrics}".rstrip()


async def _run(args: argparse.Namespace, stats: ProbeStats) -> None:
    config = SmartAirConfig.from_env()

    def on_observation(kind: str, event: ObservationEvent) -> None:
        stats.observations += 1
        print(f"[probe] {kind} {_format_observation(event)}")
        if args.raw:
            print(json.dumps(event.raw, ensure_ascii=False, sort_keys=True, default=str))

    def on_alert(alert: Alert) -> None:
        stats.alerts += 1
        print(f"[probe] alert {alert.severity} {alert.level} station={alert.station_id} {alert.message}")

    def on_status(status: ConnectionStatus) -> None:
        stats.status_changes += 1
        print(f"[probe] status {status.state} transport={status.transport} last_error={status.last_error}")

    async with SmartAirClient(config) as client:
        client.subscribe(Category.NEW_DATA, lambda event: on_observation("newData", event))
        client.subscribe(Category.UPDATE, lambda event: on_observation("update", event))
        client.subscribe(Category.ALERT, on_alert)
        client.subscribe(Category.STATUS_CHANGED, on_status)

        live = await client.initialize()
        print(f"[probe] Initialized ({'push' if live else 'polling'})")

        while args.duration <= 0 or (time.time() - stats.started_at) < args.duration:
            await asyncio.sleep(1.0)
            status = client.get_status()
            if status.waiting_for_data:
                _LOG.debug("Waiting for data (last ingest %s)", status.last_ingest_at)
        print(f"[probe] Reached --duration={args.duration}s, stopping.")


def _print_summary(stats: ProbeStats) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_s      : {runtime:.1f}")
    print(f"[probe]   observations   : {stats.observations}")
    print(f"[probe]   alerts         : {stats.alerts}")
    print(f"[probe]   status_changes : {stats.status_changes}")


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    stats = ProbeStats(started_at=time.time())
    try:
        asyncio.run(_run(args, stats))
    except KeyboardInterrupt:
        pass
    except SmartAirError as exc:  # pragma: no cover - network/system interaction
        print(f"[probe] Failed: {exc}", file=sys.stderr)
        return 2

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
