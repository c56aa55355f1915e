"""Error taxonomy shared by the search and ledger services.

Routers translate these into HTTP responses (see ``saga.main``); services
raise them and never return partial results.
"""
from __future__ import annotations

from typing import Optional


class SagaError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(SagaError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ConstraintViolationError(ValidationError):
    """The store rejected a write outright, e.g. an unknown user; retrying will not help."""

    code = "CONSTRAINT_VIOLATION"


class NotFoundError(SagaError, LookupError):
    code = "NOT_FOUND"
    status_code = 404


class WalletNotFoundError(NotFoundError):
    code = "WALLET_NOT_FOUND"

    def __init__(self, user_id: int):
        super().__init__("Wallet not found")
        self.user_id = user_id


class InsufficientResourceError(SagaError):
    code = "INSUFFICIENT_RESOURCES"
    status_code = 409

    def __init__(self, resource_type: str, required: int, available: int):
        super().__init__(
            f"Insufficient {resource_type}. Required: {required}, Available: {available}"
        )
        self.resource_type = resource_type
        self.required = required
        self.available = available

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            resourceType=self.resource_type,
            required=self.required,
            available=self.available,
        )
        return data


class TransientStoreError(SagaError):
    """Connection, lock-wait or retry-exhaustion failure; safe to retry."""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class SearchError(TransientStoreError):
    code = "SEARCH_FAILED"


__all__ = [
    "SagaError",
    "ValidationError",
    "ConstraintViolationError",
    "NotFoundError",
    "WalletNotFoundError",
    "InsufficientResourceError",
    "TransientStoreError",
    "SearchError",
]
