"""Errors raised by key management."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class KeyPoolError(Exception):
    """Base class for key management errors."""


class DuplicateKeyError(KeyPoolError):
    """The provider already has a record with this key."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"This API key is already stored for provider '{provider_id}'")


class NoAvailableKeyError(KeyPoolError):
    """No key of the provider is currently usable."""

    def __init__(self, provider_id: str, reason: Optional[str] = None):
        self.provider_id = provider_id
        self.reason = reason
        message = f"No available API key for provider '{provider_id}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class KeyNotFoundError(KeyPoolError):
    """No key record with the given id."""

    def __init__(self, key_id: str):
        self.key_id = key_id
        super().__init__(f"API key not found: {key_id}")


class StorageError(KeyPoolError):
    """The underlying store failed; the operation was not applied."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


@asynccontextmanager
async def translate_storage_errors(operation: str, **context):
    """Re-raise database failures inside the block as ``StorageError``.

    ``IntegrityError`` handling stays with the caller, which knows what the
    violated constraint means.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as e:
        logger.error(
            "Storage operation failed",
            extra={"operation": operation, **context},
            exc_info=True,
        )
        raise StorageError(operation, str(e)) from e
