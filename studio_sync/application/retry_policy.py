from __future__ import annotations

from dataclasses import dataclass

from studio_sync.bootstrap.settings import AppSettings


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for queued remote mutations.

    `attempt` is 1-based: after the first failed attempt the item waits
    `base_delay_seconds`, then twice that, and so on up to `max_delay_seconds`.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    def delay_for(self, attempt: int) -> float:
        exponent = max(0, attempt - 1)
        return min(self.base_delay_seconds * (self.multiplier**exponent), self.max_delay_seconds)

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.backoff_base_seconds,
            multiplier=settings.backoff_multiplier,
            max_delay_seconds=settings.backoff_max_seconds,
        )
