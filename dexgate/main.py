"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from dexgate.app import Gateway
from dexgate.config.config import Settings
from dexgate.infra.logging_cfg import ERROR, build_logger, log_event

log = logging.getLogger("dexgate")


async def main() -> None:
    try:
        cfg = Settings.load()
    except ValueError as exc:
        log_event(log, "config_invalid", level=ERROR, err=str(exc))
        sys.exit(1)
    build_logger("dexgate", level=cfg.log_level, file_path=cfg.log_file)

    try:
        gateway = Gateway.from_settings(cfg)
    except ValueError as exc:
        log_event(log, "startup_failed", level=ERROR, err=str(exc))
        sys.exit(1)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    try:
        await gateway.start()
        await stop_event.wait()
        log.info("Shutdown signal received, cleaning up...")
    except (asyncio.CancelledError, KeyboardInterrupt):
        log.info("Shutdown signal received, cleaning up...")
    finally:
        log.info("Closing servers and connections...")
        await gateway.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
