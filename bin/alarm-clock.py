#!/usr/bin/env python3
"""Zone alarm clock daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from alarmclock.engine.config import AlarmClockConfig
from alarmclock.engine.service import AlarmClockService

LOGGER = logging.getLogger("alarm-clock")


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    for noisy in ("httpx", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    config = AlarmClockConfig.from_env()
    service = AlarmClockService(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(service.run())
    run_task.add_done_callback(lambda _task: stop_event.set())
    await stop_event.wait()
    await service.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
