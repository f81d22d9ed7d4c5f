"""
Error taxonomy for the stock ledger and transfer engine.

Every error carries a machine-readable ``kind`` and a human-readable
``message``; the API renders both as ``{"kind": ..., "message": ...}``.
"""

from fastapi import status


class InventoryError(Exception):
    kind = "InventoryError"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidArgument(InventoryError):
    """Malformed input: non-positive quantity, identical source/destination."""

    kind = "InvalidArgument"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(InventoryError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStock(InventoryError):
    kind = "InsufficientStock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


class Conflict(InventoryError):
    """Uniqueness or state conflict (duplicate name, reused idempotency key)."""

    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class InvariantViolation(InventoryError):
    """A mutation would leave negative stock. Never clamped, always fatal."""

    kind = "InvariantViolation"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransientStorageError(InventoryError):
    kind = "TransientStorageError"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
