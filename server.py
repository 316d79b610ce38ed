"""
FastAPI Server for the LogMiner CDC source.

Provides health check, offset inspection and dead letter queue endpoints.
"""

import logging
from dataclasses import asdict
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from core.dlq_manager import DLQManager
from core.engine import StreamRunner

logger = logging.getLogger(__name__)

app = FastAPI(title="LogMiner CDC Source")

_runner: Optional[StreamRunner] = None
_dlq_manager: Optional[DLQManager] = None


def register_runner(runner: Optional[StreamRunner]) -> None:
    """Attach the runner whose state the endpoints report."""
    global _runner
    _runner = runner


def register_dlq(dlq_manager: Optional[DLQManager]) -> None:
    """Attach the dead letter queue the /dlq endpoints operate on."""
    global _dlq_manager
    _dlq_manager = dlq_manager


def _require_dlq() -> tuple[str, DLQManager]:
    if _runner is None:
        raise HTTPException(status_code=404, detail="No source registered")
    if _dlq_manager is None:
        raise HTTPException(status_code=404, detail="Dead letter queue is disabled")
    return _runner.source.name, _dlq_manager


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/offsets")
async def get_offsets():
    """Current offset of the registered source."""
    if _runner is None:
        raise HTTPException(status_code=404, detail="No source registered")
    source = _runner.source
    return {
        "source": source.name,
        "running": _runner.is_running,
        "records_emitted": _runner.records_emitted,
        "offset": source.create_snapshot().to_map(),
    }


@app.get("/dlq")
async def get_dlq(limit: int = Query(100, ge=1, le=1000)):
    """Unparsable statements parked in the dead letter queue."""
    source_name, dlq = _require_dlq()
    messages = dlq.read(source_name, max_messages=limit)
    return {
        "source": source_name,
        "size": dlq.get_queue_size(source_name),
        "messages": [{"id": message_id, **asdict(message)} for message_id, message in messages],
    }


@app.delete("/dlq/{message_id}")
async def acknowledge_dlq_message(message_id: str):
    """Remove one message after it has been handled."""
    source_name, dlq = _require_dlq()
    if dlq.acknowledge(source_name, [message_id]) == 0:
        raise HTTPException(status_code=404, detail=f"Message {message_id} not found")
    return {"acknowledged": message_id}


@app.delete("/dlq")
async def purge_dlq():
    """Drop the whole dead letter queue of the registered source."""
    source_name, dlq = _require_dlq()
    logger.warning(f"Purging dead letter queue for source {source_name}")
    return {"source": source_name, "deleted": dlq.delete_queue(source_name)}


def run_server(host: str, port: int) -> None:
    """
    Run FastAPI server using Uvicorn.

    Args:
        host: Host to bind to
        port: Port to bind to
    """
    logger.info(f"Starting API server at http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    except Exception as e:
        logger.error(f"Failed to start API server: {e}")
