"""
Shared fixtures: an in-memory stand-in for a python-oracledb connection
serving the LogMiner statements the source issues.
"""

import os
import sys
import threading

import oracledb
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config import OracleSourceConfig
from core.logminer import (
    CURRENT_DB_SCN_SQL,
    LASTSCN_STARTPOS_SQL,
    LOGMINER_SELECT_SQL,
    START_LOGMINER_SQL,
    STOP_LOGMINER_SQL,
)

LOGMINER_COLUMNS = [
    "SCN",
    "COMMIT_SCN",
    "ROW_ID",
    "CSF",
    "SEG_OWNER",
    "TABLE_NAME",
    "SQL_REDO",
    "TIMESTAMP",
    "OPERATION",
]


def logminer_row(sql_redo, scn=100, commit_scn=None, csf=0, row_id="AAAR1", owner="HR",
                 table="EMP", operation=None, timestamp=None):
    """Build one V$LOGMNR_CONTENTS row as a dict."""
    if operation is None:
        operation = sql_redo.split()[0].upper() if sql_redo else "INSERT"
    return {
        "SCN": scn,
        "COMMIT_SCN": commit_scn if commit_scn is not None else scn,
        "ROW_ID": row_id,
        "CSF": csf,
        "SEG_OWNER": owner,
        "TABLE_NAME": table,
        "SQL_REDO": sql_redo,
        "TIMESTAMP": timestamp,
        "OPERATION": operation,
    }


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.description = None
        self.rowfactory = None
        self.arraysize = 100
        self.prefetchrows = 2
        self.closed = False
        self._rows = []

    def execute(self, sql, parameters=None, **kwargs):
        params = dict(parameters or {}, **kwargs)
        self.connection.executed.append((sql, params))
        error = self.connection.errors.get(sql)
        if error is not None:
            raise error

        if sql == CURRENT_DB_SCN_SQL:
            self.description = [("CURRENT_SCN",)]
            self._rows = [(self.connection.current_scn,)]
        elif sql == LASTSCN_STARTPOS_SQL:
            self.description = [("FIRST_CHANGE#",)]
            self._rows = [(self.connection.first_change,)]
        elif sql == LOGMINER_SELECT_SQL:
            self.description = [(name,) for name in LOGMINER_COLUMNS]
            self.connection.select_cursor = self
            self._rows = [
                tuple(row.get(name) for name in LOGMINER_COLUMNS)
                for row in self.connection.logminer_rows
                if row["COMMIT_SCN"] >= params["commit_scn"]
            ]
        elif sql in (START_LOGMINER_SQL, STOP_LOGMINER_SQL):
            self._rows = []
        else:
            raise AssertionError(f"Unexpected SQL: {sql}")

    def fetchone(self):
        if self.connection.block_fetch:
            self.connection.fetch_started.set()
            self.connection.cancelled.wait(timeout=5)
            raise oracledb.DatabaseError("ORA-01013: user requested cancel of current operation")
        if self.connection.fetch_error is not None:
            raise self.connection.fetch_error
        if not self._rows:
            return None
        row = self._rows.pop(0)
        return self.rowfactory(*row) if self.rowfactory else row

    def close(self):
        if self.connection.close_cursor_error is not None:
            raise self.connection.close_cursor_error
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class FakeConnection:
    def __init__(self, logminer_rows=None, current_scn=5000, first_change=4000):
        self.logminer_rows = list(logminer_rows or [])
        self.current_scn = current_scn
        self.first_change = first_change
        self.executed = []
        self.errors = {}
        self.fetch_error = None
        self.close_cursor_error = None
        self.block_fetch = False
        self.fetch_started = threading.Event()
        self.cancelled = threading.Event()
        self.select_cursor = None
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def cancel(self):
        self.cancelled.set()

    def close(self):
        self.closed = True

    def statements(self):
        return [sql for sql, _ in self.executed]

    def params_for(self, sql):
        return [params for executed, params in self.executed if executed == sql]

    def push_rows(self, rows):
        """Make more rows visible to the open LogMiner select."""
        self.select_cursor._rows.extend(
            tuple(row.get(name) for name in LOGMINER_COLUMNS) for row in rows
        )


@pytest.fixture
def source_config():
    """Oracle source configuration with a small fetch size."""
    return OracleSourceConfig(
        host="db.example.com",
        port=1521,
        database="ORCLCDB",
        user="logminer",
        password="secret",
        fetch_size=10,
    )


@pytest.fixture
def fake_connection():
    """Fake connection with no LogMiner rows."""
    return FakeConnection()


@pytest.fixture
def make_connection():
    """Factory for fake connections serving the given LogMiner rows."""

    def _make(rows=None, **kwargs):
        return FakeConnection(rows, **kwargs)

    return _make
