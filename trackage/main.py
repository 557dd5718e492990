"""CLI argument parsing and process entry point."""

import asyncio
import logging
import os
import signal
import sys

from .app import TrackageApp
from .config import ConfigError, load_config
from .store import StoreUnavailableError

logger = logging.getLogger(__name__)


async def _serve(config_path) -> int:
    config = load_config(config_path)
    app = TrackageApp(config)
    loop = asyncio.get_running_loop()

    def _reload() -> None:
        try:
            new_config = load_config(config_path)
        except ConfigError as e:
            logger.error(f"Reload failed, keeping current configuration: {e}")
            return
        logging.getLogger().setLevel(new_config.logging.level.upper())
        task = loop.create_task(app.reload(new_config))
        task.add_done_callback(_log_reload_failure)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.stop)
    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, _reload)

    try:
        await app.run()
    except StoreUnavailableError as e:
        logger.critical(f"Package store unavailable, exiting: {e}")
        return 1
    finally:
        await app.shutdown()
    return 0


def _log_reload_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Reload failed: {task.exception()}")


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Trackage package tracker")
    parser.add_argument(
        "--config",
        default=os.getenv("TRACKAGE_CONFIG"),
        help="Path to the YAML config file (default: ./trackage.yaml if present)",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"trackage: {e}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=config.logging.level.upper(),
        format="%(levelname)s: %(name)s - %(message)s",
    )

    sys.exit(asyncio.run(_serve(args.config)))


if __name__ == "__main__":
    main()
