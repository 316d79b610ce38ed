#!/usr/bin/env python3
"""
LogMiner CDC Source - Main Entry Point

Streams row-level changes from an Oracle database's redo log and logs them
as JSON, checkpointing the offset to a local file.

Configuration via environment variables:
    ORACLE_HOST, ORACLE_PORT, ORACLE_DATABASE, ORACLE_USER, ORACLE_PASSWORD
    ORACLE_START_SCN    - Optional: start from this SCN when no offset is saved
    ORACLE_RESET_OFFSET - Zero the offset when none was saved (true/false)
    DLQ_ENABLED         - Keep unparsable statements in Redis (true/false)
    DEBUG               - Enable debug logging (true/false)
    LOG_LEVEL           - Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import logging
import os
import signal
import sys
import threading
from typing import Optional

from config.config import Config, get_config
from core.checkpoint import FileOffsetStorage
from core.dlq_manager import DLQManager
from core.engine import StreamRunner
from core.exceptions import CDCException
from server import register_dlq, register_runner, run_server
from sources.oracle import OracleLogMinerSource


def setup_logging() -> None:
    """Configure logging based on environment and config."""
    config = get_config()

    # Check for DEBUG environment variable
    debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
    level = logging.DEBUG if debug else getattr(logging, config.logging.level.upper())

    logging.basicConfig(
        level=level,
        format=config.logging.format,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_runner(config: Config, dlq_manager: Optional[DLQManager] = None) -> StreamRunner:
    """Create the source and the runner driving it."""
    source = OracleLogMinerSource(
        config.source,
        name=config.runner.source_name,
        dlq_manager=dlq_manager,
    )
    storage = FileOffsetStorage(config.offsets.get_offset_file(config.runner.source_name))
    return StreamRunner(
        source,
        offset_storage=storage,
        poll_interval_ms=config.runner.poll_interval_ms,
        checkpoint_interval_ms=config.offsets.checkpoint_interval_ms,
    )


def main() -> int:
    """Main entry point."""
    setup_logging()
    logger = logging.getLogger(__name__)
    config = get_config()

    dlq_manager = None
    if config.dlq.enabled:
        dlq_manager = DLQManager(
            redis_url=config.dlq.redis_url,
            key_prefix=config.dlq.key_prefix,
            max_stream_length=config.dlq.max_stream_length,
        )

    runner = build_runner(config, dlq_manager)
    register_runner(runner)
    register_dlq(dlq_manager)

    def _signal_handler(signum, frame):
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info(f"Received {signal_name}, shutting down")
        # Stop from another thread: the fetch may be blocked in this one
        threading.Thread(target=runner.stop, kwargs={"cancel": True}, daemon=True).start()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        logger.info(f"Starting LogMiner CDC source for {config.source.display_name}")

        if config.server.enabled:
            # Start API Server in a separate thread
            server_thread = threading.Thread(
                target=run_server,
                args=(config.server.host, config.server.port),
                daemon=True,
            )
            server_thread.start()

        runner.run()
        return 0

    except CDCException as e:
        logger.error(f"Fatal error: {e.message}", exc_info=True)
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        if dlq_manager:
            dlq_manager.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    sys.exit(main())
