#!/usr/bin/env python3
"""
Process Watch Script
====================

Standalone script that starts a process through a running gateway and
prints its relayed output stream.

This script:
    1. Subscribes to /api/start/{server}/{type}/{pid} on the gateway
    2. Prints every frame as it arrives
    3. Stops the process after --duration seconds (or on Ctrl+C)
    4. Reports a final summary

Prerequisites:
    - The gateway must be running at the configured URL
    - The server id must be registered in the gateway

Usage:
    python scripts/watch_process.py --server wsl --pid 42
    python scripts/watch_process.py --server wsl --pid 42 --type script
    python scripts/watch_process.py --gateway http://localhost:3000 --server wsl --pid 42 --duration 60
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from jpid_gateway.errors import StreamSubscribeError
from jpid_gateway.stream import ProcessStreamConsumer


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _render(frame) -> str:
    data = frame.data()
    if isinstance(data, dict) and set(data) == {"text"}:
        return str(data["text"])
    return frame.payload


async def _print_frames(consumer: ProcessStreamConsumer) -> None:
    async for frame in consumer:
        print(f"[{frame.event_type}] {_render(frame)}", flush=True)


async def watch(
    gateway: str,
    server_id: str,
    process_id: str,
    start_type: str,
    background: bool,
    duration: float,
) -> dict:
    """
    Watch one process stream.

    Args:
        gateway: Base URL of the gateway
        server_id: Registry id of the job server
        process_id: Process to start
        start_type: run or script
        background: Background flag for run starts
        duration: Seconds before the process is stopped (0 = until it ends)

    Returns:
        Final metrics dict
    """
    logger.info("=" * 60)
    logger.info(f"Gateway: {gateway}")
    logger.info(f"Target: {server_id}/{process_id} ({start_type})")
    logger.info(f"Duration: {duration or 'until end of stream'}")
    logger.info("=" * 60)

    start_time = time.time()
    async with ProcessStreamConsumer(
        gateway_url=gateway,
        server_id=server_id,
        process_id=process_id,
        start_type=start_type,
        background=background,
    ) as consumer:
        reader = asyncio.create_task(_print_frames(consumer))
        try:
            if duration > 0:
                done, _ = await asyncio.wait({reader}, timeout=duration)
                if not done:
                    logger.info(f"Duration ({duration}s) reached, stopping process")
                    await consumer.stop()
            await reader
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            if not reader.done():
                reader.cancel()
                await asyncio.wait({reader})

        metrics = consumer.metrics.to_dict()

    total_time = time.time() - start_time
    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Session: {consumer.session_id}")
    logger.info(f"Frames received: {metrics['frames_received']}")
    logger.info(f"Bytes received: {metrics['bytes_received']}")
    logger.info(f"Parse errors: {metrics['parse_errors']}")
    logger.info(f"Terminal event: {metrics['terminal_event']}")
    logger.info("=" * 60)

    return {"duration": total_time, **metrics}


def main():
    parser = argparse.ArgumentParser(
        description="Start a process through the jpid gateway and follow its output"
    )
    parser.add_argument(
        "--gateway",
        type=str,
        default=os.environ.get("JPID_GATEWAY_URL", "http://localhost:3000"),
        help="Base URL of the gateway",
    )
    parser.add_argument("--server", type=str, required=True, help="Registered server id")
    parser.add_argument("--pid", type=str, required=True, help="Process id to start")
    parser.add_argument(
        "--type",
        type=str,
        default="run",
        choices=["run", "script"],
        help="Start type (default: run)",
    )
    parser.add_argument(
        "--background",
        action="store_true",
        help="Run in background (run starts only)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Stop the process after this many seconds (default: 0, wait for end)",
    )

    args = parser.parse_args()

    try:
        result = asyncio.run(watch(
            gateway=args.gateway,
            server_id=args.server,
            process_id=args.pid,
            start_type=args.type,
            background=args.background,
            duration=args.duration,
        ))
    except StreamSubscribeError as e:
        logger.error(f"{e.message}: {e.details}")
        sys.exit(2)

    # Exit with appropriate code
    sys.exit(0 if result["terminal_event"] == "complete" else 1)


if __name__ == "__main__":
    main()
