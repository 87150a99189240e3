"""
Tests for the processed-event pruning job and structured log output.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from fulfillment.logging_config import JSONFormatter
from fulfillment.models import ProcessedEvent
from fulfillment.utils import utc_now
from fulfillment.workers import maintenance


@pytest.mark.asyncio
async def test_prune_job_uses_retention_window(session_factory):
    async with session_factory() as session:
        session.add_all([
            ProcessedEvent(event_id="evt_old", gateway="paypal", processed_at=utc_now() - timedelta(days=31)),
            ProcessedEvent(event_id="evt_recent", gateway="paypal", processed_at=utc_now() - timedelta(days=29)),
        ])
        await session.commit()

    @asynccontextmanager
    async def db_context():
        async with session_factory() as session:
            yield session

    with patch.object(maintenance, "get_db_context", db_context):
        deleted = await maintenance._prune(30)

    assert deleted == 1
    async with session_factory() as session:
        remaining = (await session.execute(select(ProcessedEvent.event_id))).scalars().all()
        assert remaining == ["evt_recent"]


def test_prune_task_defaults_to_configured_retention():
    with patch.object(maintenance, "_prune", AsyncMock(return_value=4)) as prune:
        result = maintenance.prune_processed_events.run()

    prune.assert_awaited_once_with(30)
    assert result == {"deleted": 4, "retention_days": 30}


def test_json_formatter_merges_context():
    record = logging.LogRecord(
        name="fulfillment.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Order %s completed",
        args=("abc",),
        exc_info=None,
    )
    record.context = {"order_id": "abc", "grant_count": 2}

    output = json.loads(JSONFormatter().format(record))

    assert output["message"] == "Order abc completed"
    assert output["level"] == "INFO"
    assert output["order_id"] == "abc"
    assert output["grant_count"] == 2
