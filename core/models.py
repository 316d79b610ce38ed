"""
Data models for the LogMiner CDC source.

Dataclass representations of change records, offsets and session state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


SCN_POSITION_FIELD = "scnposition"
COMMIT_SCN_POSITION_FIELD = "commitscnposition"
ROW_ID_POSITION_FIELD = "rowid"


class Operation(str, Enum):
    """Row-level DML operation."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["Operation"]:
        """Map a LogMiner OPERATION column value, or None if it is not DML."""
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class SessionState(str, Enum):
    """Mining session lifecycle state."""
    UNSTARTED = "UNSTARTED"
    STARTING = "STARTING"
    ACTIVE = "ACTIVE"
    STOPPED = "STOPPED"


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    text = str(value).strip()
    return int(text) if text else 0


@dataclass(frozen=True)
class OffsetState:
    """
    Durable position of the source in the redo log.

    Attributes:
        scn: Log position (system change number)
        commit_scn: Commit position of the last consumed transaction
        row_id: Identifier of the last consumed row (opaque)
    """
    scn: int = 0
    commit_scn: int = 0
    row_id: str = ""

    @property
    def is_empty(self) -> bool:
        """True when no log position has been recorded."""
        return self.scn == 0

    def to_map(self) -> dict[str, str]:
        """Serialize to the checkpoint map of three string fields."""
        return {
            SCN_POSITION_FIELD: str(self.scn),
            COMMIT_SCN_POSITION_FIELD: str(self.commit_scn),
            ROW_ID_POSITION_FIELD: self.row_id or "",
        }

    @classmethod
    def from_map(cls, data: Optional[Mapping[str, Any]]) -> "OffsetState":
        """Create OffsetState from a checkpoint map; missing fields default."""
        if not data:
            return cls()
        return cls(
            scn=_to_int(data.get(SCN_POSITION_FIELD)),
            commit_scn=_to_int(data.get(COMMIT_SCN_POSITION_FIELD)),
            row_id=data.get(ROW_ID_POSITION_FIELD) or "",
        )


@dataclass(frozen=True)
class ChangeRecord:
    """
    A single row-level change mined from the redo log.

    INSERT records have an empty ``before``, DELETE records an empty
    ``after``. Both maps are read-only.
    """
    scn: int
    seg_owner: str
    table_name: str
    operation: Operation
    before: Mapping[str, str] = field(default_factory=dict)
    after: Mapping[str, str] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    commit_scn: int = 0
    row_id: str = ""
    sql_redo: str = ""

    def __post_init__(self):
        object.__setattr__(self, "before", MappingProxyType(dict(self.before)))
        object.__setattr__(self, "after", MappingProxyType(dict(self.after)))

    @property
    def is_insert(self) -> bool:
        """Check if this is an insert operation."""
        return self.operation == Operation.INSERT

    @property
    def is_update(self) -> bool:
        """Check if this is an update operation."""
        return self.operation == Operation.UPDATE

    @property
    def is_delete(self) -> bool:
        """Check if this is a delete operation."""
        return self.operation == Operation.DELETE

    @property
    def qualified_table_name(self) -> str:
        """Owner-qualified table name (OWNER.TABLE)."""
        if self.seg_owner:
            return f"{self.seg_owner}.{self.table_name}"
        return self.table_name

    def to_dict(self) -> dict[str, Any]:
        """Serialize record to a JSON-compatible dict."""
        return {
            "scn": self.scn,
            "commit_scn": self.commit_scn,
            "row_id": self.row_id,
            "seg_owner": self.seg_owner,
            "table_name": self.table_name,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "operation": self.operation.value,
            "before": dict(self.before),
            "after": dict(self.after),
            "sql_redo": self.sql_redo,
        }
