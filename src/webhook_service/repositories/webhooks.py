"""Webhook repositories (subscriptions + deliveries outbox)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID, uuid4

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import (
    AttemptResult,
    DeliveryTask,
    Webhook,
    WebhookDelivery,
)
from webhook_service.repositories.base import BaseRepository

_UPDATABLE_WEBHOOK_COLUMNS = ("name", "url", "events", "is_active")


class WebhookRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> Webhook:
        return Webhook.model_validate(dict(record))

    async def create(
        self,
        *,
        organization_id: int,
        name: str,
        url: str,
        secret: str,
        events: list[str],
        is_active: bool,
        created_by: int | None = None,
    ) -> Webhook:
        record = await self._fetchrow(
            """
            INSERT INTO webhooks (organization_id, name, url, secret, events, is_active, created_by)
            VALUES ($1, $2, $3, $4, $5::text[], $6, $7)
            RETURNING *
            """,
            organization_id,
            name,
            url,
            secret,
            events,
            is_active,
            created_by,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, webhook_id: int, *, organization_id: int | None = None) -> Webhook:
        if organization_id is None:
            record = await self._fetchrow("SELECT * FROM webhooks WHERE id = $1", webhook_id)
        else:
            record = await self._fetchrow(
                "SELECT * FROM webhooks WHERE id = $1 AND organization_id = $2",
                webhook_id,
                organization_id,
            )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def list_by_organization(
        self, organization_id: int, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[Webhook], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhooks
            WHERE organization_id = $1
            ORDER BY created_at DESC, id DESC
            LIMIT $2 OFFSET $3
            """,
            organization_id,
            limit,
            offset,
        )
        items: List[Webhook] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(Webhook.model_validate(rec_dict))
        if total is None:
            total = await self._count_by_organization(organization_id)
        return items, total

    async def _count_by_organization(self, organization_id: int) -> int:
        record = await self._fetchrow(
            "SELECT COUNT(*) AS total FROM webhooks WHERE organization_id = $1",
            organization_id,
        )
        return int(record["total"]) if record else 0

    async def list_active_matching(self, organization_id: int, event: str) -> List[Webhook]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhooks
            WHERE organization_id = $1
              AND is_active = true
              AND $2 = ANY(events)
            ORDER BY id ASC
            """,
            organization_id,
            event,
        )
        return [self._to_model(r) for r in records]

    async def update(
        self,
        webhook_id: int,
        changes: dict[str, Any],
        *,
        organization_id: int | None = None,
    ) -> Webhook:
        unknown = set(changes) - set(_UPDATABLE_WEBHOOK_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update webhook columns: {sorted(unknown)}")
        if not changes:
            return await self.get(webhook_id, organization_id=organization_id)

        assignments: list[str] = []
        values: list[Any] = [webhook_id]
        for column in _UPDATABLE_WEBHOOK_COLUMNS:
            if column not in changes:
                continue
            values.append(changes[column])
            cast = "::text[]" if column == "events" else ""
            assignments.append(f"{column} = ${len(values)}{cast}")
        where = "id = $1"
        if organization_id is not None:
            values.append(organization_id)
            where += f" AND organization_id = ${len(values)}"
        record = await self._fetchrow(
            f"""
            UPDATE webhooks
            SET {", ".join(assignments)},
                updated_at = now()
            WHERE {where}
            RETURNING *
            """,
            *values,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def delete(self, webhook_id: int, *, organization_id: int | None = None) -> None:
        if organization_id is None:
            record = await self._fetchrow(
                "DELETE FROM webhooks WHERE id = $1 RETURNING id", webhook_id
            )
        else:
            record = await self._fetchrow(
                "DELETE FROM webhooks WHERE id = $1 AND organization_id = $2 RETURNING id",
                webhook_id,
                organization_id,
            )
        if record is None:
            raise NotFoundError("Webhook not found")


@dataclass(frozen=True)
class DeliveryDraft:
    """A delivery row about to be inserted."""

    webhook_id: int
    organization_id: int
    event: str
    payload: str


class WebhookDeliveryRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookDelivery:
        return WebhookDelivery.model_validate(dict(record))

    async def create_many(self, drafts: list[DeliveryDraft]) -> List[WebhookDelivery]:
        """Insert all drafts in one transaction; either every row exists or none does."""
        if not drafts:
            return []
        created: List[WebhookDelivery] = []
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                for draft in drafts:
                    record = await conn.fetchrow(
                        """
                        INSERT INTO webhook_deliveries (
                            webhook_id,
                            organization_id,
                            event,
                            payload,
                            status,
                            attempts
                        )
                        VALUES ($1, $2, $3, $4, 'pending', 0)
                        RETURNING *
                        """,
                        draft.webhook_id,
                        draft.organization_id,
                        draft.event,
                        draft.payload,
                    )
                    assert record is not None
                    created.append(self._to_model(record))
        return created

    async def get(
        self, delivery_id: int, *, organization_id: int | None = None
    ) -> WebhookDelivery:
        if organization_id is None:
            record = await self._fetchrow(
                "SELECT * FROM webhook_deliveries WHERE id = $1", delivery_id
            )
        else:
            record = await self._fetchrow(
                "SELECT * FROM webhook_deliveries WHERE id = $1 AND organization_id = $2",
                delivery_id,
                organization_id,
            )
        if record is None:
            raise NotFoundError("Webhook delivery not found")
        return self._to_model(record)

    async def list_by_webhook(
        self,
        webhook_id: int,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDelivery], int]:
        where = ["webhook_id = $1"]
        values: list[Any] = [webhook_id]
        idx = 2
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status.value)
            idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_deliveries
            WHERE {where_sql}
            ORDER BY created_at DESC, id DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        values.extend([limit, offset])
        records = await self._fetch(query, *values)
        items: List[WebhookDelivery] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(WebhookDelivery.model_validate(rec_dict))
        if total is None:
            total = await self._count_by_webhook(webhook_id, status=status)
        return items, total

    async def _count_by_webhook(
        self, webhook_id: int, *, status: DeliveryStatus | None = None
    ) -> int:
        if status is None:
            record = await self._fetchrow(
                "SELECT COUNT(*) AS total FROM webhook_deliveries WHERE webhook_id = $1",
                webhook_id,
            )
        else:
            record = await self._fetchrow(
                "SELECT COUNT(*) AS total FROM webhook_deliveries WHERE webhook_id = $1 AND status = $2",
                webhook_id,
                status.value,
            )
        return int(record["total"]) if record else 0

    async def list_due(self, now: datetime, *, limit: int = 100) -> List[WebhookDelivery]:
        """Pending deliveries whose retry time has come, claimed or not."""
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_deliveries
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= $1)
            ORDER BY next_retry_at ASC NULLS FIRST, id ASC
            LIMIT $2
            """,
            now,
            limit,
        )
        return [self._to_model(r) for r in records]

    async def claim_due(self, now: datetime, *, limit: int = 50) -> List[DeliveryTask]:
        """
        Atomically claim due deliveries for processing.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so multiple dispatchers
        won't process the same delivery concurrently.

        Side-effects:
          - claim_token -> a fresh token shared by this batch
          - claimed_at -> now
        """
        token = uuid4()
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_deliveries
                        WHERE status = 'pending'
                          AND claim_token IS NULL
                          AND (next_retry_at IS NULL OR next_retry_at <= $2)
                        ORDER BY next_retry_at ASC NULLS FIRST, id ASC
                        LIMIT $1
                        FOR UPDATE SKIP LOCKED
                    )
                    UPDATE webhook_deliveries d
                    SET claim_token = $3,
                        claimed_at = $2,
                        updated_at = $2
                    FROM cte, webhooks w
                    WHERE d.id = cte.id
                      AND w.id = d.webhook_id
                    RETURNING d.*,
                              w.url AS webhook_url,
                              w.secret AS webhook_secret,
                              w.is_active AS webhook_active
                    """,
                    limit,
                    now,
                    token,
                )
        tasks: List[DeliveryTask] = []
        for rec in records:
            rec_dict = dict(rec)
            url = rec_dict.pop("webhook_url")
            secret = rec_dict.pop("webhook_secret")
            active = rec_dict.pop("webhook_active")
            tasks.append(
                DeliveryTask(
                    delivery=WebhookDelivery.model_validate(rec_dict),
                    url=url,
                    secret=secret,
                    webhook_active=active,
                    claim_token=token,
                )
            )
        return tasks

    async def record_attempt(
        self,
        delivery_id: int,
        claim_token: UUID,
        result: AttemptResult,
        *,
        now: datetime,
    ) -> WebhookDelivery | None:
        """Write an attempt outcome and release the claim.

        Returns ``None`` when the claim was lost (reclaimed, or the delivery is
        already terminal or deleted); nothing is written in that case.
        """
        record = await self._fetchrow(
            """
            UPDATE webhook_deliveries
            SET status = $3,
                attempts = $4,
                response_status = $5,
                response_body = $6,
                last_error = $7,
                next_retry_at = $8,
                completed_at = $9,
                claim_token = NULL,
                claimed_at = NULL,
                updated_at = $10
            WHERE id = $1
              AND claim_token = $2
              AND status = 'pending'
            RETURNING *
            """,
            delivery_id,
            claim_token,
            result.status.value,
            result.attempts,
            result.response_status,
            result.response_body,
            result.last_error,
            result.next_retry_at,
            result.completed_at,
            now,
        )
        return self._to_model(record) if record is not None else None

    async def release_stale_claims(self, claimed_before: datetime) -> int:
        """Release claims left behind by a crashed worker.

        The deliveries stay ``pending`` with their ``next_retry_at`` untouched, so
        the next sweep sees them as due again.

        Returns the number of released rows.
        """
        result = await self._execute(
            """
            UPDATE webhook_deliveries
            SET claim_token = NULL,
                claimed_at = NULL,
                updated_at = now()
            WHERE status = 'pending'
              AND claim_token IS NOT NULL
              AND claimed_at < $1
            """,
            claimed_before,
        )
        return self._affected(result)

    async def delete_old_succeeded(self, created_before: datetime) -> int:
        """Purge succeeded deliveries older than *created_before*. Returns count."""
        result = await self._execute(
            "DELETE FROM webhook_deliveries WHERE status = 'success' AND created_at < $1",
            created_before,
        )
        return self._affected(result)
