"""Stress-test the Starlight matchmaking and signaling websocket."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import statistics
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

try:  # pragma: no cover - optional dependency
    import websockets
except Exception as exc:  # pragma: no cover - runtime guard
    raise SystemExit(
        "The 'websockets' package is required to run this load test tool."
    ) from exc


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerResult:
    """Outcome of one simulated client."""

    connected: bool
    connect_latency: float | None = None
    match_latency: float | None = None
    initiator: bool | None = None
    messages_sent: int = 0
    messages_received: int = 0
    heartbeat_latencies: list[float] = field(default_factory=list)
    partner_left: bool = False
    duration: float = 0.0
    error: str | None = None


async def _send(websocket: Any, message_type: str, payload: dict[str, Any] | None = None) -> None:
    envelope: dict[str, Any] = {"type": message_type}
    if payload is not None:
        envelope["payload"] = payload
    await websocket.send(json.dumps(envelope))


async def _receive(websocket: Any, timeout: float, *expected: str) -> dict[str, Any]:
    """Return the next frame whose type is in *expected*, answering pings on the way."""

    deadline = time.perf_counter() + timeout
    while True:
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            raise asyncio.TimeoutError(f"no {'/'.join(expected)} frame within {timeout}s")
        message = json.loads(await asyncio.wait_for(websocket.recv(), timeout=remaining))
        if message.get("type") == "ping":
            await _send(websocket, "pong")
            continue
        if message.get("type") in expected:
            return message


async def _worker(
    index: int,
    url: str,
    *,
    session_duration: float,
    heartbeat_interval: float,
    match_timeout: float,
    open_timeout: float,
) -> WorkerResult:
    """Connect, queue for a partner, exchange one signal, then keep the call alive."""

    start_time = time.perf_counter()
    result = WorkerResult(connected=False)
    try:
        async with websockets.connect(url, open_timeout=open_timeout, ping_interval=None) as websocket:
            hello = await _receive(websocket, open_timeout, "connected")
            connected_at = time.perf_counter()
            result.connected = True
            result.connect_latency = connected_at - start_time
            result.messages_received += 1
            logger.debug("worker %s registered as %s", index, hello["payload"]["clientId"])

            await _send(websocket, "join-queue", {"preferences": {}})
            result.messages_sent += 1
            matched = await _receive(websocket, match_timeout, "matched")
            result.messages_received += 1
            result.match_latency = time.perf_counter() - connected_at
            result.initiator = bool(matched["payload"]["initiator"])
            partner_id = matched["payload"]["partnerId"]

            if result.initiator:
                await _send(websocket, "signal", {"to": partner_id, "signal": {"type": "offer", "sdp": "v=0"}})
                result.messages_sent += 1
            await _receive(websocket, match_timeout, "signal")
            result.messages_received += 1
            if not result.initiator:
                await _send(websocket, "signal", {"to": partner_id, "signal": {"type": "answer", "sdp": "v=0"}})
                result.messages_sent += 1

            deadline = time.perf_counter() + session_duration
            while time.perf_counter() < deadline:
                await asyncio.sleep(heartbeat_interval)
                sent_at = time.perf_counter()
                await _send(websocket, "heartbeat")
                result.messages_sent += 1
                reply = await _receive(websocket, match_timeout, "heartbeat-ack", "partner-disconnected")
                result.messages_received += 1
                if reply["type"] == "partner-disconnected":
                    result.partner_left = True
                    break
                result.heartbeat_latencies.append(time.perf_counter() - sent_at)
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # pragma: no cover - network failures are non-deterministic
        result.error = f"{type(exc).__name__}: {exc}"
        logger.warning("worker %s failed: %s", index, result.error)
    finally:
        result.duration = time.perf_counter() - start_time
    return result


def _aggregate(results: Iterable[WorkerResult]) -> dict[str, Any]:
    """Compute summary metrics for all workers."""

    results = list(results)
    successes = [item for item in results if item.connected and item.error is None]
    failures = [item for item in results if item.error is not None or not item.connected]

    def _stats(samples: list[float]) -> dict[str, float] | None:
        if not samples:
            return None
        samples_sorted = sorted(samples)
        count = len(samples_sorted)
        return {
            "avg": statistics.fmean(samples_sorted),
            "p50": statistics.median(samples_sorted),
            "p95": samples_sorted[int(0.95 * (count - 1))],
            "p99": samples_sorted[int(0.99 * (count - 1))],
            "max": samples_sorted[-1],
        }

    initiators = sum(1 for item in successes if item.initiator)
    failure_reasons = Counter(item.error for item in failures if item.error)

    return {
        "attempted": len(results),
        "connected": len(successes),
        "failed": len(failures),
        "matched": sum(1 for item in successes if item.match_latency is not None),
        "initiators": initiators,
        "responders": len(successes) - initiators,
        "partner_left": sum(1 for item in successes if item.partner_left),
        "connection_latency": _stats([item.connect_latency for item in successes if item.connect_latency]),
        "match_latency": _stats([item.match_latency for item in successes if item.match_latency]),
        "heartbeat_latency": _stats([lat for item in successes for lat in item.heartbeat_latencies]),
        "messages_sent": sum(item.messages_sent for item in successes),
        "messages_received": sum(item.messages_received for item in successes),
        "failures": dict(failure_reasons),
        "wall_clock_seconds": max((item.duration for item in results), default=0.0),
    }


async def run_load_test(args: argparse.Namespace) -> dict[str, Any]:
    """Entry point used by the CLI wrapper."""

    if args.clients % 2:
        logger.warning("odd client count %s; one client will time out waiting for a partner", args.clients)

    logger.info(
        "starting load test: url=%s clients=%s duration=%ss",
        args.url,
        args.clients,
        args.session_duration,
    )

    tasks = [
        asyncio.create_task(
            _worker(
                index,
                args.url,
                session_duration=args.session_duration,
                heartbeat_interval=args.heartbeat_interval,
                match_timeout=args.match_timeout,
                open_timeout=args.open_timeout,
            ),
            name=f"matchmaking-load-worker-{index}",
        )
        for index in range(args.clients)
    ]

    def _cancel(signum: int, _frame: Any) -> None:  # pragma: no cover - signal handling
        logger.warning("received signal %s, cancelling load test", signum)
        for task in tasks:
            task.cancel()

    handlers: dict[int, Any] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):  # pragma: no cover - platform specific
        with contextlib.suppress(ValueError):
            handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, _cancel)

    try:
        results = await asyncio.gather(*tasks, return_exceptions=False)
    finally:
        for signum, previous in handlers.items():  # pragma: no cover - best effort cleanup
            with contextlib.suppress(ValueError):
                signal.signal(signum, previous)

    summary = _aggregate(results)
    logger.info(
        "load test finished: %s matched, %s failures", summary["matched"], summary["failed"]
    )
    return summary


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("url", help="Websocket URL, e.g. ws://localhost:8080/ws")
    parser.add_argument(
        "--clients",
        type=int,
        default=10,
        help="Number of simulated clients (pairs are formed in arrival order)",
    )
    parser.add_argument(
        "--session-duration",
        type=float,
        default=30.0,
        help="How long each matched call is kept alive (seconds)",
    )
    parser.add_argument(
        "--heartbeat-interval",
        type=float,
        default=5.0,
        help="Delay between heartbeat frames during the call (seconds)",
    )
    parser.add_argument(
        "--match-timeout",
        type=float,
        default=15.0,
        help="Timeout when waiting for a match or a reply (seconds)",
    )
    parser.add_argument(
        "--open-timeout",
        type=float,
        default=10.0,
        help="Timeout for establishing the websocket connection",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the summary as JSON for machine processing",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity level",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        summary = asyncio.run(run_load_test(args))
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("interrupted by user")
        return 130

    if args.json:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print("\n=== Matchmaking Load Test Summary ===")
        for key, value in summary.items():
            print(f"{key}: {value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
