"""
Oracle LogMiner source implementation.

Pulls rows from V$LOGMNR_CONTENTS, joins continuation rows into whole redo
statements, parses them and appends the resulting change records to the
caller's buffer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from config.config import OracleSourceConfig
from core.dlq_manager import DLQManager, DLQMessage
from core.exceptions import UnparsableStatementError
from core.logminer import MiningSessionManager
from core.models import ChangeRecord, OffsetState, Operation, SessionState
from core.offsets import OffsetStore
from core.sql_parser import parse
from sources.base import BaseSource, RecordBuffer

logger = logging.getLogger(__name__)


SCN_FIELD = "SCN"
COMMIT_SCN_FIELD = "COMMIT_SCN"
ROW_ID_FIELD = "ROW_ID"
CSF_FIELD = "CSF"
SEG_OWNER_FIELD = "SEG_OWNER"
TABLE_NAME_FIELD = "TABLE_NAME"
SQL_REDO_FIELD = "SQL_REDO"
TIMESTAMP_FIELD = "TIMESTAMP"
OPERATION_FIELD = "OPERATION"

# Redo of internal temporary-table bookkeeping contains this text
TEMPORARY_TABLE_MARKER = "temporary tables"


@dataclass
class _PendingStatement:
    """A redo statement being assembled from continuation rows."""

    header: dict[str, Any]
    fragments: list[str] = field(default_factory=list)
    skip: bool = False

    @property
    def sql(self) -> str:
        return "".join(self.fragments)


class OracleLogMinerSource(BaseSource):
    """
    Oracle CDC source using LogMiner.

    The LogMiner session is started lazily on the first ``fill`` call, after
    any offset restore. ``fill`` is meant to be called from one thread;
    ``create_snapshot`` and ``stop`` may be called from others.
    """

    def __init__(
        self,
        config: OracleSourceConfig,
        name: str = "oracle-cdc",
        connection_factory: Optional[Callable[[], Any]] = None,
        dlq_manager: Optional[DLQManager] = None,
    ):
        """
        Initialize Oracle source.

        Args:
            config: Oracle source configuration
            name: Source name used for logging and offset files
            connection_factory: Optional callable returning a DB-API connection
            dlq_manager: Optional dead letter queue for unparsable statements
        """
        super().__init__(name)
        self._config = config
        self._offsets = OffsetStore()
        self._session = MiningSessionManager(config, self._offsets, connection_factory)
        self._dlq_manager = dlq_manager
        self._pending: Optional[_PendingStatement] = None

        if config.table_whitelist:
            self._logger.info(
                f"Table whitelist {config.table_whitelist} is accepted but not applied; "
                f"all tables are captured"
            )

    @classmethod
    def from_properties(
        cls, properties: Mapping[str, str], **kwargs
    ) -> "OracleLogMinerSource":
        """Create a source from connector properties (db.hostname, db.port, ...)."""
        return cls(OracleSourceConfig.from_properties(properties), **kwargs)

    @property
    def config(self) -> OracleSourceConfig:
        """Get source configuration."""
        return self._config

    @property
    def session_state(self) -> SessionState:
        """Lifecycle state of the LogMiner session."""
        return self._session.state

    def create_snapshot(self) -> OffsetState:
        """Get the current offset."""
        return self._offsets.snapshot()

    def restore_snapshot(self, state: OffsetState) -> None:
        """
        Restore a persisted offset.

        Raises:
            RestoreAfterStartError: If the LogMiner session already started
        """
        self._offsets.restore(state)

    def fill(self, buffer: RecordBuffer, budget: Optional[int] = None) -> int:
        """
        Append up to ``budget`` change records to the buffer.

        Temporary-table statements are skipped and do not count toward the
        budget. Unparsable statements are dropped but do count. Returns
        early, without error, when the cursor has no more rows.

        Args:
            buffer: Sink receiving the records
            budget: Maximum statements to consume; defaults to the fetch size

        Returns:
            Number of statements consumed
        """
        if budget is None:
            budget = self._config.fetch_size
        self._session.ensure_started()

        consumed = 0
        last_header: Optional[dict[str, Any]] = None

        while consumed < budget:
            row = self._session.fetch_row()
            if row is None:
                break

            statement = self._accumulate(row)
            if statement is None:
                continue

            consumed += 1
            last_header = statement.header
            record = self._build_record(statement)
            if record is not None:
                buffer.append(record)

        if last_header is not None:
            self._offsets.advance(
                int(last_header.get(SCN_FIELD) or 0),
                int(last_header.get(COMMIT_SCN_FIELD) or 0),
                last_header.get(ROW_ID_FIELD) or "",
            )

        return consumed

    def _accumulate(self, row: dict[str, Any]) -> Optional[_PendingStatement]:
        """
        Add a row to the statement being assembled.

        Returns:
            The completed statement, or None while continuation rows are
            outstanding or when the statement is skipped
        """
        fragment = row.get(SQL_REDO_FIELD) or ""
        pending = self._pending

        if pending is None:
            pending = _PendingStatement(
                header=row,
                fragments=[fragment],
                skip=TEMPORARY_TABLE_MARKER in fragment,
            )
        else:
            pending.fragments.append(fragment)

        if row.get(CSF_FIELD):
            self._pending = pending
            return None

        self._pending = None
        if pending.skip:
            self._logger.debug(
                f"Skipping temporary table activity at SCN {pending.header.get(SCN_FIELD)}"
            )
            return None
        return pending

    def _build_record(self, statement: _PendingStatement) -> Optional[ChangeRecord]:
        header = statement.header
        sql = statement.sql
        scn = int(header.get(SCN_FIELD) or 0)

        try:
            parsed = parse(sql)
        except UnparsableStatementError as e:
            self._logger.warning(
                f"Dropping unparsable redo statement at SCN {scn} "
                f"({header.get(SEG_OWNER_FIELD)}.{header.get(TABLE_NAME_FIELD)}): {e.message}"
            )
            self._dead_letter(header, sql, e)
            return None

        operation = parsed.kind
        reported = Operation.from_value(header.get(OPERATION_FIELD))
        if reported is not None and reported != operation:
            self._logger.warning(
                f"LogMiner reported {reported.value} at SCN {scn} but redo SQL is "
                f"{operation.value}; using {operation.value}"
            )

        return ChangeRecord(
            scn=scn,
            commit_scn=int(header.get(COMMIT_SCN_FIELD) or 0),
            row_id=header.get(ROW_ID_FIELD) or "",
            seg_owner=header.get(SEG_OWNER_FIELD) or parsed.seg_owner,
            table_name=header.get(TABLE_NAME_FIELD) or parsed.table_name,
            timestamp=header.get(TIMESTAMP_FIELD),
            operation=operation,
            before=parsed.before,
            after=parsed.after,
            sql_redo=sql,
        )

    def _dead_letter(
        self, header: dict[str, Any], sql: str, error: UnparsableStatementError
    ) -> None:
        if self._dlq_manager is None:
            return
        message = DLQMessage(
            source_name=self.name,
            scn=int(header.get(SCN_FIELD) or 0),
            commit_scn=int(header.get(COMMIT_SCN_FIELD) or 0),
            row_id=header.get(ROW_ID_FIELD) or "",
            seg_owner=header.get(SEG_OWNER_FIELD) or "",
            table_name=header.get(TABLE_NAME_FIELD) or "",
            sql_redo=sql,
            error_message=error.message,
        )
        self._dlq_manager.enqueue(message)

    def stop(self) -> None:
        """Stop the LogMiner session; teardown failures are logged only."""
        errors = self._session.stop()
        if errors:
            self._logger.warning(
                f"LogMiner session stopped with {len(errors)} teardown error(s)"
            )
        else:
            self._logger.info(f"Source {self.name} stopped")
