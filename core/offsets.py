"""
In-memory offset store for the LogMiner source.

Holds the current OffsetState and swaps it as a whole under one lock, so a
checkpoint taken from another thread never pairs the SCN of one row with the
commit SCN of another.
"""

import logging
import threading
from typing import Optional

from core.exceptions import RestoreAfterStartError
from core.models import OffsetState

logger = logging.getLogger(__name__)


class OffsetStore:
    """Thread-safe holder of the source offset."""

    def __init__(self, initial: Optional[OffsetState] = None):
        self._state = initial or OffsetState()
        self._lock = threading.Lock()
        self._sealed = False

    @property
    def is_sealed(self) -> bool:
        """True once the mining session has begun starting."""
        return self._sealed

    def snapshot(self) -> OffsetState:
        """Return the current offset state."""
        with self._lock:
            return self._state

    def restore(self, state: OffsetState) -> None:
        """
        Replace the offset state with a previously persisted one.

        Raises:
            RestoreAfterStartError: If the session has already started
        """
        with self._lock:
            if self._sealed:
                raise RestoreAfterStartError(
                    details={"current": self._state.to_map(), "requested": state.to_map()}
                )
            self._state = state
        logger.info(f"Offset restored: {state.to_map()}")

    def seal(self) -> None:
        """Reject further restores; called when the session starts."""
        with self._lock:
            self._sealed = True

    def initialize(self, state: OffsetState) -> bool:
        """
        Seed the store with the session start position if nothing is recorded.

        Allowed after seal. Returns True when the state was applied.
        """
        with self._lock:
            if not self._state.is_empty:
                return False
            self._state = state
        logger.info(f"Offset initialized to start position: {state.to_map()}")
        return True

    def clear(self) -> None:
        """Zero out all offset fields."""
        with self._lock:
            self._state = OffsetState()

    def advance(self, scn: int, commit_scn: int, row_id: str) -> OffsetState:
        """
        Record the position of the last consumed row.

        Positions never move backwards.

        Returns:
            The new offset state
        """
        with self._lock:
            current = self._state
            if scn < current.scn or commit_scn < current.commit_scn:
                logger.debug(
                    f"Offset regression ignored: scn={scn} commit_scn={commit_scn} "
                    f"(current scn={current.scn} commit_scn={current.commit_scn})"
                )
            self._state = OffsetState(
                scn=max(scn, current.scn),
                commit_scn=max(commit_scn, current.commit_scn),
                row_id=row_id or "",
            )
            return self._state
