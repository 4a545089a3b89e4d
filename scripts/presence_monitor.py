#!/usr/bin/env python3
"""Live presence monitor.

Connects to the MQTT presence store configured by ``TRANSIT_MQTT_*``
environment variables and prints the merged fleet + driver view every time
either stream changes.

Usage
-----
::

    export TRANSIT_MQTT_HOST="broker.example.com"
    python scripts/presence_monitor.py --duration 300

Options::

    --duration SECS   Maximum runtime (0 = run until Ctrl+C)
    --no-demo         Do not substitute the demo fleet for an empty fleet
    --refresh SECS    Recompute staleness every N seconds (default: 30)
    --verbose / -v    Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from transitpresence import MergedView, PresenceClient, PresenceConfig, PresenceError  # noqa: E402
from transitpresence.config import MqttStoreConfig  # noqa: E402
from transitpresence.formatting import format_accuracy, format_last_updated, format_speed  # noqa: E402
from transitpresence.merger import default_demo_fleet  # noqa: E402
from transitpresence.models import EntityKind, FleetEntry, PresenceRecord  # noqa: E402
from transitpresence.store.mqtt import MqttPresenceStore  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print the merged live transit view from an MQTT presence store.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--no-demo",
        action="store_true",
        help="Show an empty fleet instead of the demo fleet.",
    )
    parser.add_argument(
        "--refresh",
        type=float,
        default=30.0,
        help="Seconds between staleness recomputes without stream changes.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_view(view: MergedView) -> None:
    centroid = view.centroid
    center = f"{centroid.latitude:.5f},{centroid.longitude:.5f}" if centroid else "-"
    demo = " (demo fleet)" if view.used_demo_fleet else ""
    print(f"[monitor] {len(view.entities)} entities, center {center}{demo}")
    for merged in view.entities:
        entity = merged.entity
        updated = format_last_updated(merged.timestamp, view.computed_at)
        if merged.kind == EntityKind.FLEET and isinstance(entity, FleetEntry):
            speed = f"{entity.speed_kmh:.0f} km/h" if entity.speed_kmh else "Stationary"
            print(f"[monitor]   bus    {entity.bus_id:<10} {entity.route:<24} {entity.status:<12} {speed:<11} {updated}")
        elif isinstance(entity, PresenceRecord):
            flag = "stale" if merged.is_stale else "live"
            print(
                f"[monitor]   driver {entity.driver_id:<10} {entity.display_name:<24} {flag:<12} "
                f"{format_speed(entity.speed_meters_per_second):<11} {updated} "
                f"±{format_accuracy(entity.accuracy_meters)}"
            )


async def _monitor(args: argparse.Namespace) -> None:
    config = PresenceConfig.from_env()
    store = MqttPresenceStore(MqttStoreConfig.from_env())
    demo_fleet = None if args.no_demo else default_demo_fleet
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop.set)

    async with PresenceClient(store, config=config, demo_fleet=demo_fleet) as client:
        client.merger.on_change(_print_view)
        deadline = loop.time() + args.duration if args.duration > 0 else None
        while not stop.is_set():
            timeout = args.refresh
            if deadline is not None:
                timeout = min(timeout, max(deadline - loop.time(), 0.0))
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout)
            if deadline is not None and loop.time() >= deadline:
                break
            client.merger.refresh()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(_monitor(args))
    except PresenceError as exc:
        print(f"[monitor] {exc.message}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
