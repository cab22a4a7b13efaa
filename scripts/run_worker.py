# scripts/run_worker.py
"""Run the background job worker until interrupted."""

from __future__ import annotations

import argparse
import asyncio
import signal

from vidflow.bootstrap import bootstrap_all, build_services
from vidflow.core.logging import get_logger, init_logging
from vidflow.store.db import dispose_engine

logger = get_logger(__name__)


async def run_worker(*, once: bool = False) -> None:
    await bootstrap_all()
    services = build_services()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        if once:
            processed = await services.runner.run_once()
            logger.info("worker.run_once", extra={"processed": processed})
        else:
            await services.runner.run_forever(stop)
    finally:
        await dispose_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--once", action="store_true", help="Process one batch of due jobs and exit"
    )
    args = parser.parse_args()
    init_logging()
    asyncio.run(run_worker(once=args.once))


if __name__ == "__main__":  # pragma: no cover - CLI execution
    main()
