import os
import sys

import fakeredis
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conftest import logminer_row
from core.dlq_manager import DLQManager
from core.engine import StreamRunner
from server import app, register_dlq, register_runner
from sources.oracle import OracleLogMinerSource

client = TestClient(app)


@pytest.fixture(autouse=True)
def clear_runner():
    register_runner(None)
    register_dlq(None)
    yield
    register_runner(None)
    register_dlq(None)


def test_health_check_endpoint():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_offsets_without_runner():
    response = client.get("/offsets")
    assert response.status_code == 404


def test_offsets_reports_source_position(source_config, make_connection):
    connection = make_connection(
        [logminer_row("insert into T(A) values ('1')", scn=101, commit_scn=102, row_id="AAAR1")],
        current_scn=100,
    )
    source = OracleLogMinerSource(
        source_config, name="hr", connection_factory=lambda: connection
    )
    runner = StreamRunner(source, handler=lambda records: None)
    runner.run_once()
    register_runner(runner)

    response = client.get("/offsets")

    assert response.status_code == 200
    assert response.json() == {
        "source": "hr",
        "running": False,
        "records_emitted": 1,
        "offset": {"scnposition": "101", "commitscnposition": "102", "rowid": "AAAR1"},
    }


# ─── Dead letter queue ──────────────────────────────────────────────────────


@pytest.fixture
def dlq_runner(source_config, make_connection):
    """Runner whose only statement is unparsable and lands in the DLQ."""
    dlq = DLQManager(client=fakeredis.FakeRedis())
    connection = make_connection(
        [
            logminer_row("Unsupported", scn=101, row_id="AAAR3", operation="INSERT"),
            logminer_row("Also unsupported", scn=102, row_id="AAAR4", operation="INSERT"),
        ],
        current_scn=100,
    )
    source = OracleLogMinerSource(
        source_config, name="hr", connection_factory=lambda: connection, dlq_manager=dlq
    )
    runner = StreamRunner(source, handler=lambda records: None)
    runner.run_once()
    register_runner(runner)
    register_dlq(dlq)
    return dlq


def test_dlq_disabled():
    response = client.get("/dlq")
    assert response.status_code == 404


def test_dlq_lists_unparsable_statements(dlq_runner):
    response = client.get("/dlq")

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "hr"
    assert body["size"] == 2
    assert [message["row_id"] for message in body["messages"]] == ["AAAR3", "AAAR4"]
    assert body["messages"][0]["sql_redo"] == "Unsupported"
    assert body["messages"][0]["id"]


def test_dlq_limit(dlq_runner):
    response = client.get("/dlq", params={"limit": 1})

    assert len(response.json()["messages"]) == 1


def test_dlq_acknowledge(dlq_runner):
    message_id = client.get("/dlq").json()["messages"][0]["id"]

    response = client.delete(f"/dlq/{message_id}")

    assert response.status_code == 200
    assert dlq_runner.get_queue_size("hr") == 1
    assert client.delete(f"/dlq/{message_id}").status_code == 404


def test_dlq_purge(dlq_runner):
    response = client.delete("/dlq")

    assert response.status_code == 200
    assert response.json() == {"source": "hr", "deleted": True}
    assert dlq_runner.get_queue_size("hr") == 0
