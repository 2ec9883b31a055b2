"""Delivery worker: one signed HTTP attempt per claimed delivery."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

import structlog
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from webhook_service.core.exceptions import DeliveryTransportError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import AttemptResult, DeliveryTask, WebhookDelivery
from webhook_service.repositories.webhooks import WebhookDeliveryRepository
from webhook_service.services.retry import RetryPolicy
from webhook_service.services.signature import SIGNATURE_HEADER, sign
from webhook_service.services.state_machine import validate_delivery_transition

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-Webhook-Event"
DELIVERY_HEADER = "X-Webhook-Delivery"
ATTEMPT_HEADER = "X-Webhook-Attempt"
USER_AGENT = "webhook-service/1.0"

WEBHOOK_INACTIVE_REASON = "webhook deactivated"

_READ_CHUNK_SIZE = 4096


def storable_text(value: str) -> str:
    """Replace NUL characters, which a Postgres ``text`` column rejects."""
    return value.replace("\x00", "\ufffd")


async def read_excerpt(response: ClientResponse, limit: int) -> str | None:
    """Read at most ``limit`` bytes of the body; the rest is never buffered."""
    if limit <= 0:
        return None
    buf = bytearray()
    async for chunk in response.content.iter_chunked(_READ_CHUNK_SIZE):
        buf.extend(chunk)
        if len(buf) >= limit:
            break
    if not buf:
        return None
    # a multi-byte character cut at the limit is dropped
    return storable_text(bytes(buf[:limit]).decode("utf-8", errors="ignore"))


class DeliveryWorker:
    """Executes a single attempt for a claimed delivery and records the outcome.

    Attempt failures (non-2xx, timeouts, connection errors) end up in the
    delivery row and never propagate out of :meth:`process`.
    """

    def __init__(
        self,
        session: ClientSession,
        repository: WebhookDeliveryRepository,
        policy: RetryPolicy,
        *,
        timeout_seconds: float = 10.0,
        response_body_limit: int = 2000,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session = session
        self._repository = repository
        self._policy = policy
        self._timeout = ClientTimeout(total=timeout_seconds)
        self._timeout_seconds = timeout_seconds
        self._body_limit = response_body_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def process(self, task: DeliveryTask) -> WebhookDelivery | None:
        delivery = task.delivery
        if delivery.is_terminal:
            logger.warning(
                "webhook_delivery_already_terminal",
                delivery_id=delivery.id,
                status=delivery.status.value,
            )
            return None

        if not task.webhook_active:
            return await self._cancel(task)

        attempts = delivery.attempts + 1
        body = delivery.body
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            SIGNATURE_HEADER: sign(body, task.secret),
            EVENT_HEADER: delivery.event,
            DELIVERY_HEADER: delivery.envelope_id,
            ATTEMPT_HEADER: str(attempts),
        }

        response_status: int | None
        excerpt: str | None
        try:
            response_status, excerpt = await self._post(task.url, body, headers)
        except DeliveryTransportError as exc:
            response_status, excerpt, error = None, None, storable_text(str(exc))
        else:
            error = None if 200 <= response_status < 300 else f"HTTP {response_status}"

        finished_at = self._clock()
        result = self._outcome(attempts, response_status, excerpt, error, finished_at)
        validate_delivery_transition(delivery.status, result.status)
        updated = await self._repository.record_attempt(
            delivery.id, task.claim_token, result, now=finished_at
        )
        self._log_outcome(task, result, recorded=updated is not None)
        return updated

    async def _post(
        self, url: str, body: bytes, headers: dict[str, str]
    ) -> tuple[int, str | None]:
        try:
            async with self._session.post(
                url,
                data=body,
                headers=headers,
                timeout=self._timeout,
                allow_redirects=False,
            ) as resp:
                excerpt = await read_excerpt(resp, self._body_limit)
                return resp.status, excerpt
        except asyncio.TimeoutError as exc:
            raise DeliveryTransportError(
                f"Request timed out after {self._timeout_seconds:g}s"
            ) from exc
        except ClientError as exc:
            raise DeliveryTransportError(f"{type(exc).__name__}: {exc}") from exc

    def _outcome(
        self,
        attempts: int,
        response_status: int | None,
        excerpt: str | None,
        error: str | None,
        now: datetime,
    ) -> AttemptResult:
        if error is None:
            return AttemptResult(
                status=DeliveryStatus.SUCCESS,
                attempts=attempts,
                response_status=response_status,
                response_body=excerpt,
                completed_at=now,
            )
        if self._policy.is_exhausted(attempts):
            return AttemptResult(
                status=DeliveryStatus.FAILED,
                attempts=attempts,
                response_status=response_status,
                response_body=excerpt,
                last_error=error,
                completed_at=now,
            )
        return AttemptResult(
            status=DeliveryStatus.PENDING,
            attempts=attempts,
            response_status=response_status,
            response_body=excerpt,
            last_error=error,
            next_retry_at=self._policy.next_retry_at(attempts, now),
        )

    async def _cancel(self, task: DeliveryTask) -> WebhookDelivery | None:
        delivery = task.delivery
        now = self._clock()
        result = AttemptResult(
            status=DeliveryStatus.FAILED,
            attempts=delivery.attempts,
            response_status=delivery.response_status,
            response_body=delivery.response_body,
            last_error=WEBHOOK_INACTIVE_REASON,
            completed_at=now,
        )
        validate_delivery_transition(delivery.status, result.status)
        updated = await self._repository.record_attempt(
            delivery.id, task.claim_token, result, now=now
        )
        logger.info(
            "webhook_delivery_cancelled",
            delivery_id=delivery.id,
            webhook_id=delivery.webhook_id,
            reason=WEBHOOK_INACTIVE_REASON,
        )
        return updated

    @staticmethod
    def _log_outcome(task: DeliveryTask, result: AttemptResult, *, recorded: bool) -> None:
        delivery = task.delivery
        fields = {
            "delivery_id": delivery.id,
            "webhook_id": delivery.webhook_id,
            "webhook_event": delivery.event,
            "attempts": result.attempts,
            "response_status": result.response_status,
        }
        if not recorded:
            logger.warning("webhook_delivery_claim_lost", **fields)
        elif result.status is DeliveryStatus.SUCCESS:
            logger.info("webhook_delivered", **fields)
        elif result.status is DeliveryStatus.FAILED:
            logger.error("webhook_delivery_failed", error=result.last_error, **fields)
        else:
            logger.warning(
                "webhook_delivery_retry_scheduled",
                error=result.last_error,
                next_retry_at=result.next_retry_at.isoformat() if result.next_retry_at else None,
                **fields,
            )
