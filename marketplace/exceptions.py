"""
Marketplace error types.

Constraint failures are wrapped so callers never need to import SQLAlchemy
to tell a duplicate order number from a denied write.
"""

from typing import Optional


class MarketplaceError(Exception):
    """Base class for every error raised by the marketplace core"""


class IntegrityViolationError(MarketplaceError):
    """A uniqueness, foreign key or not-null constraint rejected a write"""


class ProfileAlreadyExistsError(IntegrityViolationError):
    """An identity was provisioned twice"""

    def __init__(self, identity_id):
        self.identity_id = identity_id
        super().__init__(f"Profile already exists for identity {identity_id}")


class PermissionDeniedError(MarketplaceError):
    """The caller holds no policy allowing this write"""

    def __init__(self, table: str, action: str, reason: Optional[str] = None):
        self.table = table
        self.action = action
        message = f"{action} on {table} denied"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RecordNotFoundError(MarketplaceError):
    """No row with this id is visible to the caller"""

    def __init__(self, table: str, row_id):
        self.table = table
        self.row_id = row_id
        super().__init__(f"{table} {row_id} not found")


class InvalidStatusTransitionError(MarketplaceError):
    """An order status change that the lifecycle does not allow"""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current.value} to {requested.value}")


class UnsupportedDialectError(MarketplaceError):
    """The database engine has no INSERT ... ON CONFLICT support"""
