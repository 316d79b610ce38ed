"""
Tests for the LogMiner session manager against a fake oracledb connection.
"""

import os
import sys
import threading
from dataclasses import replace

import oracledb
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conftest import logminer_row
from core.exceptions import (
    DatabaseConnectionError,
    RestoreAfterStartError,
    SessionCancelledError,
    SessionStartError,
    SessionStoppedError,
)
from core.logminer import (
    CURRENT_DB_SCN_SQL,
    LASTSCN_STARTPOS_SQL,
    LOGMINER_SELECT_SQL,
    START_LOGMINER_SQL,
    STOP_LOGMINER_SQL,
    MiningSessionManager,
)
from core.models import OffsetState, SessionState
from core.offsets import OffsetStore


def make_manager(config, connection, offsets=None):
    return MiningSessionManager(
        config, offsets or OffsetStore(), connection_factory=lambda: connection
    )


# ─── Start position ─────────────────────────────────────────────────────────


class TestStartPosition:
    def test_fresh_start_uses_current_scn(self, source_config, fake_connection):
        offsets = OffsetStore()
        manager = make_manager(source_config, fake_connection, offsets)

        manager.ensure_started()

        assert manager.state == SessionState.ACTIVE
        assert manager.start_position == (5000, 0)
        assert fake_connection.statements() == [
            CURRENT_DB_SCN_SQL,
            START_LOGMINER_SQL,
            LOGMINER_SELECT_SQL,
        ]
        assert fake_connection.params_for(START_LOGMINER_SQL) == [{"start_scn": 5000}]
        assert fake_connection.params_for(LOGMINER_SELECT_SQL) == [{"commit_scn": 0}]
        assert offsets.snapshot() == OffsetState(scn=5000, commit_scn=0)

    def test_explicit_start_scn(self, source_config, fake_connection):
        config = replace(source_config, start_scn=1234)
        offsets = OffsetStore()
        manager = make_manager(config, fake_connection, offsets)

        manager.ensure_started()

        assert manager.start_position == (1234, 0)
        assert CURRENT_DB_SCN_SQL not in fake_connection.statements()
        assert offsets.snapshot() == OffsetState(scn=1234, commit_scn=0)

    def test_restored_offset_starts_at_containing_log(self, source_config, make_connection):
        connection = make_connection(first_change=4000)
        offsets = OffsetStore(OffsetState(scn=4500, commit_scn=4600, row_id="AAAR1"))
        manager = make_manager(source_config, connection, offsets)

        manager.ensure_started()

        assert connection.params_for(LASTSCN_STARTPOS_SQL) == [{"scn": 4500}]
        assert connection.params_for(START_LOGMINER_SQL) == [{"start_scn": 4000}]
        assert connection.params_for(LOGMINER_SELECT_SQL) == [{"commit_scn": 4600}]
        assert offsets.snapshot() == OffsetState(scn=4500, commit_scn=4600, row_id="AAAR1")

    def test_restored_offset_wins_over_start_scn(self, source_config, fake_connection):
        config = replace(source_config, start_scn=1234)
        offsets = OffsetStore(OffsetState(scn=4500, commit_scn=4600))
        manager = make_manager(config, fake_connection, offsets)

        manager.ensure_started()

        assert manager.start_position == (4000, 4600)

    def test_reset_uses_current_scn(self, source_config, fake_connection):
        config = replace(source_config, reset_offset=True)
        offsets = OffsetStore()
        manager = make_manager(config, fake_connection, offsets)

        manager.ensure_started()

        assert manager.start_position == (5000, 0)
        assert offsets.snapshot() == OffsetState(scn=5000, commit_scn=0)

    def test_reset_ignored_when_offset_restored(self, source_config, fake_connection):
        config = replace(source_config, reset_offset=True)
        offsets = OffsetStore(OffsetState(scn=4500, commit_scn=4600))
        manager = make_manager(config, fake_connection, offsets)

        manager.ensure_started()

        assert manager.start_position == (4000, 4600)

    def test_purged_position_fails_start(self, source_config, make_connection):
        connection = make_connection(first_change=None)
        offsets = OffsetStore(OffsetState(scn=4500, commit_scn=4600))
        manager = make_manager(source_config, connection, offsets)

        with pytest.raises(SessionStartError) as exc_info:
            manager.ensure_started()

        assert exc_info.value.details == {"scn": 4500}
        assert manager.state == SessionState.STOPPED
        assert connection.closed
        assert START_LOGMINER_SQL not in connection.statements()


# ─── Lifecycle ──────────────────────────────────────────────────────────────


class TestLifecycle:
    def test_connection_failure(self, source_config):
        def refuse():
            raise oracledb.OperationalError("DPY-6005: cannot connect to database")

        manager = MiningSessionManager(source_config, OffsetStore(), connection_factory=refuse)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            manager.ensure_started()

        assert exc_info.value.details["host"] == "db.example.com"
        assert manager.state == SessionState.STOPPED

    def test_start_failure_tears_down(self, source_config, fake_connection):
        fake_connection.errors[START_LOGMINER_SQL] = oracledb.DatabaseError(
            "ORA-01292: no log file has been specified"
        )
        manager = make_manager(source_config, fake_connection)

        with pytest.raises(SessionStartError):
            manager.ensure_started()

        assert manager.state == SessionState.STOPPED
        assert fake_connection.closed
        assert STOP_LOGMINER_SQL in fake_connection.statements()

    def test_started_once(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)

        manager.ensure_started()
        manager.ensure_started()

        assert fake_connection.statements().count(START_LOGMINER_SQL) == 1

    def test_concurrent_start_opens_one_session(self, source_config, fake_connection):
        opened = []

        def factory():
            opened.append(1)
            return fake_connection

        manager = MiningSessionManager(source_config, OffsetStore(), connection_factory=factory)
        threads = [threading.Thread(target=manager.ensure_started) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(opened) == 1
        assert fake_connection.statements().count(START_LOGMINER_SQL) == 1

    def test_start_seals_offsets(self, source_config, fake_connection):
        offsets = OffsetStore()
        manager = make_manager(source_config, fake_connection, offsets)

        manager.ensure_started()

        with pytest.raises(RestoreAfterStartError):
            offsets.restore(OffsetState(scn=1))

    def test_stop_releases_everything(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)
        manager.ensure_started()

        errors = manager.stop()

        assert errors == []
        assert manager.state == SessionState.STOPPED
        assert fake_connection.cancelled.is_set()
        assert fake_connection.closed
        assert fake_connection.statements()[-1] == STOP_LOGMINER_SQL

    def test_stop_is_idempotent(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)
        manager.ensure_started()
        manager.stop()
        executed = len(fake_connection.executed)

        assert manager.stop() == []
        assert len(fake_connection.executed) == executed

    def test_stop_before_start(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)

        assert manager.stop() == []
        assert manager.state == SessionState.STOPPED

    def test_restart_after_stop_rejected(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)
        manager.ensure_started()
        manager.stop()

        with pytest.raises(SessionStoppedError):
            manager.ensure_started()

    def test_teardown_continues_after_failures(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)
        manager.ensure_started()
        fake_connection.close_cursor_error = RuntimeError("cursor already closed")

        errors = manager.stop()

        assert [error.step for error in errors] == [
            "close select cursor",
            "close start cursor",
            "end logminer",
        ]
        assert all(isinstance(error.cause, RuntimeError) for error in errors)
        assert STOP_LOGMINER_SQL in fake_connection.statements()
        assert fake_connection.closed


# ─── Fetching ───────────────────────────────────────────────────────────────


class TestFetch:
    def test_rows_are_dicts(self, source_config, make_connection):
        connection = make_connection(
            [logminer_row("insert into \"HR\".\"EMP\"(\"ID\") values ('1')", scn=5001)]
        )
        manager = make_manager(source_config, connection)
        manager.ensure_started()

        row = manager.fetch_row()

        assert row["SCN"] == 5001
        assert row["SEG_OWNER"] == "HR"
        assert manager.fetch_row() is None

    def test_select_filters_on_commit_scn(self, source_config, make_connection):
        connection = make_connection(
            [
                logminer_row("insert into T(A) values ('old')", scn=4100, commit_scn=4200),
                logminer_row("insert into T(A) values ('new')", scn=4700, commit_scn=4800),
            ]
        )
        offsets = OffsetStore(OffsetState(scn=4500, commit_scn=4600))
        manager = make_manager(source_config, connection, offsets)
        manager.ensure_started()

        assert manager.fetch_row()["SCN"] == 4700
        assert manager.fetch_row() is None

    def test_fetch_before_start(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)

        with pytest.raises(SessionCancelledError):
            manager.fetch_row()

    def test_fetch_error_stops_session(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)
        manager.ensure_started()
        fake_connection.fetch_error = oracledb.DatabaseError(
            "ORA-03113: end-of-file on communication channel"
        )

        with pytest.raises(DatabaseConnectionError):
            manager.fetch_row()

        assert manager.state == SessionState.STOPPED
        assert fake_connection.closed

    def test_stop_cancels_blocked_fetch(self, source_config, fake_connection):
        manager = make_manager(source_config, fake_connection)
        manager.ensure_started()
        fake_connection.block_fetch = True
        raised = []

        def fetch():
            try:
                manager.fetch_row()
            except Exception as e:
                raised.append(e)

        fetcher = threading.Thread(target=fetch)
        fetcher.start()
        assert fake_connection.fetch_started.wait(timeout=5)

        manager.stop()
        fetcher.join(timeout=5)

        assert not fetcher.is_alive()
        assert len(raised) == 1
        assert isinstance(raised[0], SessionCancelledError)
        assert fake_connection.closed
