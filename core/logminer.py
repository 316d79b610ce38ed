"""
LogMiner session management.

Owns the connection and cursors of one LogMiner session and drives its
lifecycle: UNSTARTED -> STARTING -> ACTIVE -> STOPPED. The start position is
resolved once, from the restored offset, an explicit start SCN, a reset
request or the database's current SCN, in that order.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import oracledb

from config.config import OracleSourceConfig
from core.error_sanitizer import sanitize_for_log
from core.exceptions import (
    DatabaseConnectionError,
    SessionCancelledError,
    SessionStartError,
    SessionStoppedError,
    TeardownError,
)
from core.models import OffsetState, SessionState
from core.offsets import OffsetStore

logger = logging.getLogger(__name__)


START_LOGMINER_SQL = (
    "BEGIN\n"
    "DBMS_LOGMNR.START_LOGMNR(STARTSCN => :start_scn, OPTIONS => "
    "DBMS_LOGMNR.SKIP_CORRUPTION + DBMS_LOGMNR.NO_SQL_DELIMITER + "
    "DBMS_LOGMNR.NO_ROWID_IN_STMT + DBMS_LOGMNR.DICT_FROM_ONLINE_CATALOG + "
    "DBMS_LOGMNR.CONTINUOUS_MINE + DBMS_LOGMNR.COMMITTED_DATA_ONLY + "
    "DBMS_LOGMNR.STRING_LITERALS_IN_STMT);\n"
    "END;"
)

STOP_LOGMINER_SQL = "BEGIN\nSYS.DBMS_LOGMNR.END_LOGMNR;\nEND;"

CURRENT_DB_SCN_SQL = "SELECT MIN(CURRENT_SCN) CURRENT_SCN FROM GV$DATABASE"

# LogMiner must start on a log boundary: find the first SCN of the online or
# archived log that contains the saved SCN.
LASTSCN_STARTPOS_SQL = (
    "SELECT MIN(FIRST_CHANGE#) FIRST_CHANGE# FROM ("
    "SELECT FIRST_CHANGE# FROM V$LOG WHERE :scn BETWEEN FIRST_CHANGE# AND NEXT_CHANGE# "
    "UNION "
    "SELECT FIRST_CHANGE# FROM V$ARCHIVED_LOG WHERE :scn BETWEEN FIRST_CHANGE# AND NEXT_CHANGE# "
    "AND STANDBY_DEST = 'NO')"
)

LOGMINER_SELECT_SQL = (
    "SELECT THREAD#, SCN, START_SCN, COMMIT_SCN, TIMESTAMP, OPERATION_CODE, OPERATION, "
    "STATUS, SEG_TYPE_NAME, INFO, SEG_OWNER, TABLE_NAME, USERNAME, SQL_REDO, ROW_ID, CSF, "
    "TABLE_SPACE, SESSION_INFO, RS_ID, RBASQN, RBABLK, SEQUENCE#, TX_NAME, SEG_NAME "
    "FROM V$LOGMNR_CONTENTS "
    "WHERE OPERATION_CODE IN (1, 2, 3) AND COMMIT_SCN >= :commit_scn"
)


def _dict_row_factory(cursor) -> Callable[..., dict[str, Any]]:
    """Build a rowfactory returning rows as dicts keyed by column name."""
    columns = [description[0].upper() for description in cursor.description]

    def make_row(*values):
        return dict(zip(columns, values))

    return make_row


@dataclass
class MiningSession:
    """Handles of one LogMiner session; opened and closed together."""

    connection: Any
    start_cursor: Any = None
    select_cursor: Any = None
    start_scn: int = 0
    commit_scn: int = 0


class MiningSessionManager:
    """
    Manages the LogMiner session of one source instance.

    At most one session is open per manager. ``ensure_started`` is safe to
    call from several threads; ``stop`` may be called from another thread
    than the one fetching and interrupts a blocked fetch.
    """

    def __init__(
        self,
        config: OracleSourceConfig,
        offset_store: OffsetStore,
        connection_factory: Optional[Callable[[], Any]] = None,
    ):
        """
        Initialize session manager.

        Args:
            config: Oracle source configuration
            offset_store: Offset store read when resolving the start position
            connection_factory: Callable returning a DB-API connection;
                defaults to python-oracledb
        """
        self._config = config
        self._offsets = offset_store
        self._connection_factory = connection_factory or self._connect
        self._state = SessionState.UNSTARTED
        self._session: Optional[MiningSession] = None
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.MiningSessionManager")

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_active(self) -> bool:
        """Check if the session is open."""
        return self._state == SessionState.ACTIVE

    @property
    def start_position(self) -> Optional[tuple[int, int]]:
        """Resolved (start SCN, commit SCN) of the open session."""
        session = self._session
        if session is None:
            return None
        return session.start_scn, session.commit_scn

    def _connect(self):
        cfg = self._config
        return oracledb.connect(user=cfg.user, password=cfg.password, dsn=cfg.dsn)

    def _open_connection(self):
        self._logger.info(
            f"Opening Oracle connection to {self._config.display_name} "
            f"({self._config.host}:{self._config.port})"
        )
        try:
            return self._connection_factory()
        except oracledb.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to {self._config.display_name}: {sanitize_for_log(e)}",
                {"host": self._config.host, "port": self._config.port},
            ) from e

    def ensure_started(self) -> None:
        """
        Start the LogMiner session unless it is already active.

        Raises:
            DatabaseConnectionError: If the connection cannot be opened
            SessionStartError: If LogMiner cannot start at the resolved position
            SessionStoppedError: If the session was already stopped
        """
        if self._state == SessionState.ACTIVE:
            return

        with self._lock:
            if self._state == SessionState.ACTIVE:
                return
            if self._state == SessionState.STOPPED:
                raise SessionStoppedError(
                    "LogMiner session has been stopped and cannot be restarted"
                )

            self._state = SessionState.STARTING
            self._offsets.seal()
            try:
                self._session = self._start()
            except Exception:
                self._state = SessionState.STOPPED
                raise
            self._state = SessionState.ACTIVE

    def _start(self) -> MiningSession:
        self._logger.info("Starting LogMiner session")
        session = MiningSession(connection=self._open_connection())

        try:
            session.start_scn, session.commit_scn = self._resolve_start_position(
                session.connection
            )

            session.start_cursor = session.connection.cursor()
            session.start_cursor.execute(START_LOGMINER_SQL, start_scn=session.start_scn)
            self._logger.info(
                f"LogMiner session started at SCN {session.start_scn}, "
                f"selecting changes with commit SCN >= {session.commit_scn}"
            )

            fetch_size = self._config.fetch_size
            session.select_cursor = session.connection.cursor()
            session.select_cursor.arraysize = fetch_size
            session.select_cursor.prefetchrows = fetch_size
            session.select_cursor.execute(
                LOGMINER_SELECT_SQL, commit_scn=session.commit_scn
            )
            session.select_cursor.rowfactory = _dict_row_factory(session.select_cursor)
            self._offsets.initialize(
                OffsetState(scn=session.start_scn, commit_scn=session.commit_scn)
            )
            return session

        except SessionStartError:
            self._teardown(session)
            raise
        except oracledb.Error as e:
            self._teardown(session)
            raise SessionStartError(
                f"Failed to start LogMiner session: {sanitize_for_log(e)}",
                {"start_scn": session.start_scn, "commit_scn": session.commit_scn},
            ) from e

    def _resolve_start_position(self, connection) -> tuple[int, int]:
        """Resolve (start SCN, commit SCN) for the new session."""
        offset = self._offsets.snapshot()

        if not offset.is_empty:
            start_scn = self._first_scn_containing(connection, offset.scn)
            self._logger.info(
                f"Restored SCN {offset.scn} is contained in log starting at SCN {start_scn}"
            )
            return start_scn, offset.commit_scn

        if self._config.start_scn:
            self._logger.info(f"Starting from the specified start SCN: {self._config.start_scn}")
            return self._config.start_scn, 0

        if self._config.reset_offset:
            self._logger.info("Resetting offset")
            self._offsets.clear()

        current_scn = self._current_scn(connection)
        self._logger.info(f"Got current SCN from database: {current_scn}")
        return current_scn, 0

    def _first_scn_containing(self, connection, scn: int) -> int:
        with connection.cursor() as cursor:
            cursor.execute(LASTSCN_STARTPOS_SQL, scn=scn)
            row = cursor.fetchone()

        if row is None or row[0] is None:
            raise SessionStartError(
                f"SCN {scn} is not covered by any online or archived redo log",
                {"scn": scn},
            )
        return int(row[0])

    def _current_scn(self, connection) -> int:
        with connection.cursor() as cursor:
            cursor.execute(CURRENT_DB_SCN_SQL)
            row = cursor.fetchone()

        if row is None or row[0] is None:
            raise SessionStartError("Could not read current SCN from GV$DATABASE")
        return int(row[0])

    def fetch_row(self) -> Optional[dict[str, Any]]:
        """
        Read the next row of the LogMiner select.

        Returns:
            Row as a dict keyed by upper-case column name, or None at end of
            cursor

        Raises:
            SessionCancelledError: If the session was stopped
            DatabaseConnectionError: On any other database error; the
                session is torn down first
        """
        session = self._session
        if session is None or self._state != SessionState.ACTIVE:
            raise SessionCancelledError(
                f"LogMiner session is not active (state={self._state.value})"
            )

        try:
            return session.select_cursor.fetchone()
        except oracledb.Error as e:
            if self._state == SessionState.STOPPED:
                raise SessionCancelledError(
                    "Fetch cancelled because the LogMiner session was stopped"
                ) from e
            self._logger.error(f"LogMiner fetch failed: {sanitize_for_log(e)}")
            self.stop()
            raise DatabaseConnectionError(
                f"LogMiner fetch failed: {sanitize_for_log(e)}"
            ) from e

    def stop(self) -> list[TeardownError]:
        """
        Stop the session and release every handle.

        Each teardown step runs even if an earlier one failed. Calling stop
        more than once is harmless.

        Returns:
            Errors of the steps that failed
        """
        with self._lock:
            if self._state == SessionState.STOPPED and self._session is None:
                return []
            session = self._session
            self._session = None
            self._state = SessionState.STOPPED

        if session is None:
            return []

        self._logger.info("Stopping LogMiner session")
        return self._teardown(session)

    def _teardown(self, session: MiningSession) -> list[TeardownError]:
        steps = [
            ("cancel", session.connection.cancel),
            ("close select cursor", session.select_cursor and session.select_cursor.close),
            ("close start cursor", session.start_cursor and session.start_cursor.close),
            ("end logminer", lambda: self._end_logminer(session.connection)),
            ("close connection", session.connection.close),
        ]

        errors = []
        for step, action in steps:
            if not action:
                continue
            try:
                action()
            except Exception as e:
                error = TeardownError(step, e)
                self._logger.warning(sanitize_for_log(error))
                errors.append(error)
        return errors

    @staticmethod
    def _end_logminer(connection) -> None:
        with connection.cursor() as cursor:
            cursor.execute(STOP_LOGMINER_SQL)
