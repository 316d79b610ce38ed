"""
File-backed offset storage.

Persists the source offset as a small JSON document so a restarted process
resumes where the last checkpoint left off.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from core.models import OffsetState

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, payload: dict) -> None:
    """Write JSON to ``path`` via a temporary file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class FileOffsetStorage:
    """Stores one OffsetState in a JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[OffsetState]:
        """
        Load the stored offset.

        Returns:
            The stored OffsetState, or None if nothing was saved yet
        """
        if not self.path.exists():
            return None
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        state = OffsetState.from_map(payload.get("offset"))
        logger.info(f"Loaded offset from {self.path}: {state.to_map()}")
        return state

    def save(self, state: OffsetState) -> None:
        """Persist the offset."""
        atomic_write_json(
            self.path,
            {"offset": state.to_map(), "saved_at": time.time()},
        )
        logger.debug(f"Saved offset to {self.path}: {state.to_map()}")

    def delete(self) -> bool:
        """Remove the offset file; returns True if it existed."""
        if self.path.exists():
            self.path.unlink()
            return True
        return False
