"""Join a sensor group, stream samples and report device clock offsets."""

from __future__ import annotations

import argparse
import dataclasses
import sys
from typing import Optional, Sequence

from .core.clock import now_host_ns
from .core.config import RuntimeSettings
from .core.logging import configure_logging
from .core.time_sync import ClockModel
from .errors import TransportError
from .network.coordinator import NetworkCoordinator
from .network.loopback import LoopbackTransport
from .network.pyre_transport import PyreTransport
from .network.samples import DataSample, Event
from .network.session import SensorSession
from .network.transport import Transport
from .runner import PollLoop
from .sync.estimator import SyncEstimator

LOOPBACK_OFFSET_NS = 25_000_000
"""Clock offset of the simulated loopback device (device behind host)."""


def parse_args(argv: Sequence[str], settings: RuntimeSettings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sensornet", description=__doc__)
    parser.add_argument(
        "--group",
        default=settings.network.group,
        help=f"Discovery group to join (default: {settings.network.group})",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.network.poll_interval_s,
        help="Poll loop interval in seconds",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    parser.add_argument(
        "--ping-timeout",
        type=float,
        default=settings.sync.ping_timeout_s,
        help="Seconds to wait for a time probe echo",
    )
    parser.add_argument(
        "--loopback",
        action="store_true",
        help="Use an in-memory demo device instead of the network",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default: %(default)s)",
    )
    return parser.parse_args(argv)


def _build_loopback() -> LoopbackTransport:
    transport = LoopbackTransport()
    device = transport.add_device("loopback-companion", clock_offset_ns=LOOPBACK_OFFSET_NS)
    gaze_uuid = transport.attach_sensor(device, "gaze")
    transport.attach_sensor(device, "event")
    base = transport.device_time_ns(device)
    transport.push_data(
        gaze_uuid,
        [
            {"x": 544.0 + index, "y": 540.0 - index, "timestamp": base + index * 5_000_000}
            for index in range(10)
        ],
    )
    return transport


def _print_sample(session: SensorSession, sample: DataSample) -> None:
    print(f"[sample] {session.type} {session.uuid[:8]} {sample}")


def _print_event(sensor_uuid: str, event: Event) -> None:
    print(f"[event] {sensor_uuid[:8]} {event.name} @ {event.timestamp}")


def _report_offsets(clock_model: ClockModel) -> None:
    devices = clock_model.devices()
    if not devices:
        print("[summary] No clock offset estimates collected")
        return
    for device in devices:
        best = clock_model.best_estimate(device)
        median = clock_model.median_offset_ns(device)
        drift = clock_model.drift_ppm(device)
        drift_text = "n/a" if drift is None else f"{drift:.2f}ppm"
        print(
            f"[summary] device {device}: samples={len(clock_model.history(device))} "
            f"median_offset={median / 1_000_000.0:.3f}ms "
            f"best_rtt={best.roundtrip_ms:.3f}ms drift={drift_text}"
        )


def run(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    network = dataclasses.replace(
        settings.network, group=args.group, poll_interval_s=max(0.001, args.interval)
    )
    sync = settings.sync
    if args.ping_timeout and args.ping_timeout > 0:
        sync = dataclasses.replace(sync, ping_timeout_s=args.ping_timeout)

    transport: Transport
    if args.loopback:
        transport = _build_loopback()
    else:
        transport = PyreTransport(network.node_name)

    coordinator = NetworkCoordinator(transport, network)
    estimator = SyncEstimator(
        coordinator,
        ClockModel(sync.history_capacity),
        settings=sync,
        clock=now_host_ns,
    )
    loop = PollLoop(
        coordinator,
        estimator,
        on_sample=_print_sample,
        on_event=_print_event,
        interval=network.poll_interval_s,
    )
    try:
        loop.run(duration=args.duration)
    except TransportError as exc:
        print(f"[fatal] {exc}")
        return 1
    finally:
        loop.stop()
    _report_offsets(estimator.clock_model)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(argv if argv is not None else sys.argv[1:])
    settings = RuntimeSettings.from_env()
    args = parse_args(argv, settings)
    configure_logging(args.log_level)
    try:
        return run(args, settings)
    except KeyboardInterrupt:
        print("[fatal] Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
