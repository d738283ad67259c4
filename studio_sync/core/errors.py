from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from studio_sync.domain.models import ConflictResult


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class NotFoundError(BusinessError):
    pass


class BookingConflictError(ValidationError):
    """Raised when the conflict detector blocks a booking save."""

    def __init__(self, result: "ConflictResult") -> None:
        super().__init__(result.message)
        self.result = result


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class ExternalServiceError(InfraError):
    pass


class TransientExternalError(ExternalServiceError):
    pass
