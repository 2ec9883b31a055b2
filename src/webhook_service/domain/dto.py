"""Request DTOs for the HTTP API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    url: str
    events: list[str]
    is_active: bool = True
    secret: str | None = None
    created_by: int | None = None


class WebhookUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    url: str | None = None
    events: list[str] | None = None
    is_active: bool | None = None


class EventEmitDTO(BaseModel):
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class HookDTO(BaseModel):
    """Records involved in an inventory hook, e.g. ``{"product": {...}, "user": {...}}``."""

    context: dict[str, Any] = Field(default_factory=dict)
