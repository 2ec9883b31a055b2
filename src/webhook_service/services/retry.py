"""Retry policy for failed delivery attempts."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from webhook_service.settings import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``delay_for(n) = min(max_delay_seconds, base_delay_seconds * 2 ** (n - 1))``
    where ``n`` is the number of attempts already made (1-based).
    """

    base_delay_seconds: float = 30.0
    max_delay_seconds: float = 3600.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_seconds=settings.webhook_retry_base_seconds,
            max_delay_seconds=settings.webhook_retry_max_seconds,
            max_attempts=settings.webhook_max_attempts,
        )

    def delay_for(self, attempts: int) -> timedelta:
        exponent = max(attempts, 1) - 1
        # Past this exponent the cap always wins; avoids huge floats.
        if exponent >= 64:
            return timedelta(seconds=self.max_delay_seconds)
        seconds = min(self.max_delay_seconds, self.base_delay_seconds * (2**exponent))
        return timedelta(seconds=seconds)

    def next_retry_at(self, attempts: int, now: datetime | None = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now + self.delay_for(attempts)

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
