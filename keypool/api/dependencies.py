"""Shared route dependencies."""

import logging
from contextlib import contextmanager

from fastapi import HTTPException, Request, status

from keypool.core.keys import (
    DuplicateKeyError,
    KeyManagementService,
    KeyNotFoundError,
    KeyPoolError,
    NoAvailableKeyError,
    StorageError,
)

logger = logging.getLogger(__name__)


def get_key_service(request: Request) -> KeyManagementService:
    """The application's key management service, created in the lifespan."""
    service = getattr(request.app.state, "key_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Key management service is not initialized",
        )
    return service


@contextmanager
def key_errors():
    """Translate key management errors raised in the block into HTTP errors."""
    try:
        yield
    except DuplicateKeyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except KeyNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except NoAvailableKeyError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Storage error: {e.operation}",
        ) from e
    except KeyPoolError as e:
        logger.error("Unhandled key management error", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
