"""
Abstract base class for all CDC sources.

Provides the interface the stream runner drives: fill a buffer, take and
restore offset snapshots, and stop.
"""

from abc import ABC, abstractmethod
from typing import Optional, Protocol
import logging

from core.models import ChangeRecord, OffsetState

logger = logging.getLogger(__name__)


class RecordBuffer(Protocol):
    """Append-only sink for change records (a list works)."""

    def append(self, record: ChangeRecord) -> None:
        ...


class BaseSource(ABC):
    """
    Abstract base class for CDC sources.

    All source implementations must inherit from this class and implement
    the required methods.
    """

    def __init__(self, name: str):
        """
        Initialize base source.

        Args:
            name: Source name used for logging and offset files
        """
        self._name = name
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def name(self) -> str:
        """Get source name."""
        return self._name

    @abstractmethod
    def fill(self, buffer: RecordBuffer, budget: Optional[int] = None) -> int:
        """
        Append up to ``budget`` change records to the buffer.

        Must return after a bounded unit of work so the caller can
        checkpoint and apply backpressure between calls.

        Args:
            buffer: Sink receiving the records
            budget: Maximum number of statements to consume

        Returns:
            Number of statements consumed
        """
        pass

    @abstractmethod
    def create_snapshot(self) -> OffsetState:
        """
        Get the current offset for durable persistence.

        Returns:
            Current offset state
        """
        pass

    @abstractmethod
    def restore_snapshot(self, state: OffsetState) -> None:
        """
        Restore a previously persisted offset before the first fill.

        Args:
            state: Offset state to resume from
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """
        Stop the source and release its resources.
        """
        pass

    def __enter__(self) -> "BaseSource":
        """Context manager enter."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit."""
        self.stop()
        return False
