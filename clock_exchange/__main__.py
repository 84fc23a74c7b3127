"""
Entry point for `python -m clock_exchange`.

Usage:
    python -m clock_exchange --server [--port 7777]
    python -m clock_exchange --connect ws://host:7777/ws/exchange [--rate 20]
"""

import asyncio
import argparse
import logging
import signal
import sys

from .config import ExchangeConfig, Role, SmoothingPolicy
from .node import ExchangeNode
from .transport import DEFAULT_PATH, DEFAULT_PORT, ClientTransport, ServerTransport

logger = logging.getLogger("ClockExchange")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Estimate the clock offset between two hosts. "
                    "local time + offset = server time."
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--server", "-s", action="store_true", help="Run as server")
    mode.add_argument("--connect", "-c", metavar="URL", help="Run as client of this server URL")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind address")
    parser.add_argument("--port", "-p", type=int, default=DEFAULT_PORT)
    parser.add_argument("--path", default=DEFAULT_PATH, help="Server WebSocket path")
    parser.add_argument("--rate", "-r", type=float, default=20.0, help="Client exchange rate in Hz")
    parser.add_argument("--capacity", "-n", type=int, default=10, help="Samples averaged over")
    parser.add_argument(
        "--policy",
        choices=[p.value for p in SmoothingPolicy],
        default=SmoothingPolicy.AVERAGE.value,
    )
    parser.add_argument("--stale-timeout", type=float, default=5.0, help="Seconds before a quiet session is reset")
    parser.add_argument("--report", type=float, default=5.0, help="Seconds between status lines")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)
    if args.rate <= 0:
        parser.error("--rate must be positive")
    return args


async def run(args) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        config = ExchangeConfig(
            buffer_capacity=args.capacity,
            role=Role.SERVER if args.server else Role.CLIENT,
            smoothing=SmoothingPolicy(args.policy),
            exchange_interval=1.0 / args.rate,
            stale_timeout=args.stale_timeout,
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if args.server:
        transport = ServerTransport(host=args.host, port=args.port, path=args.path)
    else:
        transport = ClientTransport(args.connect)

    node = ExchangeNode(transport, config)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    async def reporter():
        while not shutdown.is_set():
            await asyncio.sleep(args.report)
            for peer, session in node.sessions.items():
                logger.info(
                    f"{peer}: offset={session.clock_offset}μs "
                    f"travel_offset={session.travel_offset}μs "
                    f"best={session.selector.best}μs @ rtt={session.selector.best_rtt}μs | {session.stats}"
                )

    try:
        async with transport:
            node_task = asyncio.create_task(node.run())
            report_task = asyncio.create_task(reporter())
            # A client transport ends its event stream when the server goes away
            done_waiter = asyncio.create_task(shutdown.wait())
            await asyncio.wait({node_task, done_waiter}, return_when=asyncio.FIRST_COMPLETED)
            report_task.cancel()
            done_waiter.cancel()
    except (OSError, asyncio.TimeoutError, ConnectionError) as e:
        logger.error(f"Transport failed: {e}")
        return 1

    await asyncio.gather(node_task, return_exceptions=True)
    return 0


def main():
    args = parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
