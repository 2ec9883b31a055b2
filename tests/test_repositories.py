"""SQL repositories against a mocked asyncpg pool."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import AttemptResult
from webhook_service.repositories import WebhookDeliveryRepository, WebhookRepository
from webhook_service.repositories.base import BaseRepository

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    return pool


def _conn():
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="UPDATE 0")
    return conn


def _delivery_row(**overrides):
    row = {
        "id": 1,
        "webhook_id": 2,
        "organization_id": 3,
        "event": "order.created",
        "payload": '{"id":"wh_x"}',
        "status": "pending",
        "attempts": 0,
        "response_status": None,
        "response_body": None,
        "last_error": None,
        "next_retry_at": None,
        "completed_at": None,
        "claim_token": None,
        "claimed_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.mark.parametrize("tag,count", [("UPDATE 3", 3), ("DELETE 0", 0), ("INSERT 0 1", 1)])
def test_affected_parses_command_tag(tag, count):
    assert BaseRepository._affected(tag) == count


@pytest.mark.asyncio
async def test_get_missing_webhook_raises():
    repo = WebhookRepository(_pool(_conn()))
    with pytest.raises(NotFoundError):
        await repo.get(1, organization_id=2)


@pytest.mark.asyncio
async def test_update_rejects_unknown_columns():
    repo = WebhookRepository(_pool(_conn()))
    with pytest.raises(ValueError):
        await repo.update(1, {"secret": "new"})


@pytest.mark.asyncio
async def test_update_scopes_by_organization():
    conn = _conn()
    repo = WebhookRepository(_pool(conn))
    with pytest.raises(NotFoundError):
        await repo.update(7, {"name": "n", "events": ["order.created"]}, organization_id=9)
    query, *args = conn.fetchrow.await_args.args
    assert "events = $3::text[]" in query
    assert "organization_id = $4" in query
    assert args == [7, "n", ["order.created"], 9]


@pytest.mark.asyncio
async def test_claim_due_builds_tasks_with_one_token():
    conn = _conn()
    conn.fetch.return_value = [
        {**_delivery_row(id=i), "webhook_url": "https://e.com", "webhook_secret": "s" * 64, "webhook_active": True}
        for i in (1, 2)
    ]
    repo = WebhookDeliveryRepository(_pool(conn))

    tasks = await repo.claim_due(NOW, limit=10)

    assert [t.delivery.id for t in tasks] == [1, 2]
    assert len({t.claim_token for t in tasks}) == 1
    assert tasks[0].url == "https://e.com"
    query = conn.fetch.await_args.args[0]
    assert "FOR UPDATE SKIP LOCKED" in query
    assert "claim_token IS NULL" in query


@pytest.mark.asyncio
async def test_record_attempt_returns_none_when_claim_lost():
    repo = WebhookDeliveryRepository(_pool(_conn()))
    result = AttemptResult(status=DeliveryStatus.SUCCESS, attempts=1, response_status=200, completed_at=NOW)
    assert await repo.record_attempt(1, uuid4(), result, now=NOW) is None


@pytest.mark.asyncio
async def test_record_attempt_is_guarded_by_token_and_status():
    conn = _conn()
    conn.fetchrow.return_value = _delivery_row(status="success", attempts=1, completed_at=NOW)
    repo = WebhookDeliveryRepository(_pool(conn))
    token = uuid4()
    result = AttemptResult(status=DeliveryStatus.SUCCESS, attempts=1, response_status=200, completed_at=NOW)

    delivery = await repo.record_attempt(1, token, result, now=NOW)

    assert delivery.status is DeliveryStatus.SUCCESS
    query, *args = conn.fetchrow.await_args.args
    assert "claim_token = $2" in query
    assert "status = 'pending'" in query
    assert args[:4] == [1, token, "success", 1]


@pytest.mark.asyncio
async def test_release_and_purge_return_counts():
    conn = _conn()
    conn.execute.side_effect = ["UPDATE 2", "DELETE 5"]
    repo = WebhookDeliveryRepository(_pool(conn))
    assert await repo.release_stale_claims(NOW) == 2
    assert await repo.delete_old_succeeded(NOW) == 5
    assert "status = 'success'" in conn.execute.await_args.args[0]


@pytest.mark.asyncio
async def test_list_due_selects_pending_rows_whose_retry_time_has_come():
    conn = _conn()
    conn.fetch.return_value = [_delivery_row(id=3), _delivery_row(id=4, attempts=2, next_retry_at=NOW)]
    repo = WebhookDeliveryRepository(_pool(conn))

    due = await repo.list_due(NOW, limit=25)

    assert [d.id for d in due] == [3, 4]
    query, *args = conn.fetch.await_args.args
    assert "status = 'pending'" in query
    assert "(next_retry_at IS NULL OR next_retry_at <= $1)" in query
    assert "ORDER BY next_retry_at ASC NULLS FIRST" in query
    assert args == [NOW, 25]
