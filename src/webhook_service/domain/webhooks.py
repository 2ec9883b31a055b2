"""Webhook domain primitives."""
from __future__ import annotations

import json
import secrets
import string
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from webhook_service.domain.enums import DeliveryStatus

_ALPHABET = string.ascii_letters + string.digits

SECRET_LENGTH = 64
ENVELOPE_ID_PREFIX = "wh_"
ENVELOPE_ID_LENGTH = 24


def random_string(length: int) -> str:
    """Cryptographically random alphanumeric string."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_secret() -> str:
    return random_string(SECRET_LENGTH)


def generate_envelope_id() -> str:
    return ENVELOPE_ID_PREFIX + random_string(ENVELOPE_ID_LENGTH)


def canonical_json(value: Any) -> str:
    """Serialize ``value`` the one way payloads are ever serialized."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    )


class Webhook(BaseModel):
    id: int
    organization_id: int
    name: str
    url: str
    secret: str = Field(repr=False)
    events: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_by: int | None = None
    created_at: datetime
    updated_at: datetime

    def is_subscribed_to(self, event: str) -> bool:
        return event in self.events

    def public_dict(self) -> dict[str, Any]:
        """Serializable view without the secret."""
        return self.model_dump(mode="json", exclude={"secret"})


class WebhookDelivery(BaseModel):
    id: int
    webhook_id: int
    organization_id: int
    event: str
    # Canonical JSON of the envelope, byte-for-byte what is signed and sent.
    payload: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    response_status: int | None = None
    response_body: str | None = None
    last_error: str | None = None
    next_retry_at: datetime | None = None
    completed_at: datetime | None = None
    claim_token: UUID | None = None
    claimed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def body(self) -> bytes:
        return self.payload.encode("utf-8")

    @property
    def envelope(self) -> dict[str, Any]:
        return json.loads(self.payload)

    @property
    def envelope_id(self) -> str:
        return self.envelope["id"]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def public_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"payload", "claim_token", "claimed_at"})
        data["payload"] = self.envelope
        return data


class DeliveryEnvelope(BaseModel):
    """Wire format POSTed to the target URL."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_envelope_id)
    event: str
    timestamp: str
    organization_id: int
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        event: str,
        organization_id: int,
        data: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> "DeliveryEnvelope":
        now = now or datetime.now(timezone.utc)
        return cls(
            event=event,
            timestamp=now.astimezone(timezone.utc).isoformat(timespec="seconds"),
            organization_id=organization_id,
            data=data,
        )

    def to_json(self) -> str:
        return canonical_json(self.model_dump(mode="json"))


class DeliveryTask(BaseModel):
    """A claimed delivery together with what the worker needs from its webhook."""

    delivery: WebhookDelivery
    url: str
    secret: str = Field(repr=False)
    webhook_active: bool
    claim_token: UUID


class AttemptResult(BaseModel):
    """Outcome of one processed attempt, as written back to the delivery row."""

    status: DeliveryStatus
    attempts: int
    response_status: int | None = None
    response_body: str | None = None
    last_error: str | None = None
    next_retry_at: datetime | None = None
    completed_at: datetime | None = None
