"""
inventory/errors.py -- Exceptions raised by the inventory and sync layers.

Persistence failures are not wrapped: callers catch sqlalchemy.exc.SQLAlchemyError
(IntegrityError for UNIQUE conflicts) directly, the same way the route layer
always has.
"""


class NotFoundError(LookupError):
    """A referenced integration, wrapper, artifact or item does not exist."""

    def __init__(self, resource: str, resource_id) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class InvalidInputError(ValueError):
    """Caller input breaks a domain rule (wrong batch kind, unknown artifact type).

    The API maps this, and only this, ValueError subclass to a 422.
    """


class LockTimeoutError(RuntimeError):
    """A per-wrapper version lock stayed busy past its timeout. Safe to retry."""
