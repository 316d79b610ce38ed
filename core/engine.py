"""
Stream runner for driving a CDC source.

Repeatedly fills a buffer from the source, hands each batch to a handler
and checkpoints the source offset to durable storage.
"""

import json
import logging
import threading
import time
from typing import Callable, Optional

from core.checkpoint import FileOffsetStorage
from core.exceptions import SessionCancelledError, SessionStoppedError
from core.models import ChangeRecord, OffsetState
from sources.base import BaseSource

logger = logging.getLogger(__name__)

BatchHandler = Callable[[list[ChangeRecord]], None]


def log_records(records: list[ChangeRecord]) -> None:
    """Default handler: log each record as JSON."""
    for record in records:
        logger.info(json.dumps(record.to_dict(), default=str))


class StreamRunner:
    """
    Runs one source until stopped.

    The offset is persisted only after the handler has returned for every
    batch read up to that point, giving at-least-once delivery on restart.
    """

    def __init__(
        self,
        source: BaseSource,
        handler: Optional[BatchHandler] = None,
        offset_storage: Optional[FileOffsetStorage] = None,
        poll_interval_ms: int = 500,
        checkpoint_interval_ms: int = 10000,
        budget: Optional[int] = None,
    ):
        """
        Initialize stream runner.

        Args:
            source: Source to drive
            handler: Callable receiving each non-empty batch
            offset_storage: Durable offset storage; no checkpoints when None
            poll_interval_ms: Idle wait after a fill that consumed nothing
            checkpoint_interval_ms: Minimum time between checkpoints
            budget: Per-fill budget; defaults to the source's fetch size
        """
        self._source = source
        self._handler = handler or log_records
        self._offset_storage = offset_storage
        self._poll_interval = poll_interval_ms / 1000.0
        self._checkpoint_interval = checkpoint_interval_ms / 1000.0
        self._budget = budget
        self._stop_event = threading.Event()
        self._is_running = False
        self._records_emitted = 0
        self._last_checkpoint = 0.0
        self._logger = logging.getLogger(f"{__name__}.{source.name}")

    @property
    def source(self) -> BaseSource:
        """Get the driven source."""
        return self._source

    @property
    def is_running(self) -> bool:
        """Check if the run loop is active."""
        return self._is_running

    @property
    def records_emitted(self) -> int:
        """Number of records handed to the handler so far."""
        return self._records_emitted

    def restore(self) -> Optional[OffsetState]:
        """Restore the source offset from storage, if any was saved."""
        if self._offset_storage is None:
            return None
        state = self._offset_storage.load()
        if state is not None:
            self._source.restore_snapshot(state)
            self._logger.info(f"Resuming from offset {state.to_map()}")
        return state

    def checkpoint(self) -> Optional[OffsetState]:
        """Persist the current source offset."""
        if self._offset_storage is None:
            return None
        state = self._source.create_snapshot()
        self._offset_storage.save(state)
        self._last_checkpoint = time.monotonic()
        return state

    def run_once(self) -> int:
        """
        Run a single fill and hand the batch to the handler.

        Returns:
            Number of statements the source consumed
        """
        buffer: list[ChangeRecord] = []
        consumed = self._source.fill(buffer, self._budget)
        if buffer:
            self._handler(buffer)
            self._records_emitted += len(buffer)
        return consumed

    def run(self) -> None:
        """
        Run until ``stop`` is called.

        The source is stopped when the loop ends. A final checkpoint is
        written only if the loop ended without error.
        """
        self.restore()
        self._is_running = True
        self._last_checkpoint = time.monotonic()
        clean_exit = False
        self._logger.info(f"Starting source {self._source.name}")

        try:
            while not self._stop_event.is_set():
                consumed = self.run_once()

                if time.monotonic() - self._last_checkpoint >= self._checkpoint_interval:
                    self.checkpoint()

                if consumed == 0:
                    self._stop_event.wait(self._poll_interval)
            clean_exit = True

        except (SessionCancelledError, SessionStoppedError):
            if not self._stop_event.is_set():
                raise
            self._logger.info("Fetch cancelled by shutdown")
            clean_exit = True

        finally:
            self._is_running = False
            self._source.stop()
            if clean_exit:
                self.checkpoint()
            self._logger.info(
                f"Source {self._source.name} stopped after {self._records_emitted} record(s)"
            )

    def stop(self, cancel: bool = False) -> None:
        """
        Signal the run loop to stop.

        Args:
            cancel: Also stop the source now, interrupting a blocked fetch
        """
        self._stop_event.set()
        if cancel:
            self._source.stop()
