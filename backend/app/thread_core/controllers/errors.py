"""Translate service errors into HTTP errors."""

import logging

from fastapi import HTTPException, status

from thread_core.models.errors import (
    AlreadyResolved,
    BlockNotFound,
    GenerationInProgress,
    InvalidRole,
    NotFound,
    ThreadCoreError,
)

logger = logging.getLogger(__name__)


def to_http_error(exc: Exception) -> HTTPException:
    """Map an exception raised by the ThreadService to an HTTPException."""
    # AlreadyResolved is a BlockNotFound, check it first
    if isinstance(exc, (AlreadyResolved, GenerationInProgress)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (NotFound, BlockNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidRole):
        code = status.HTTP_400_BAD_REQUEST
    else:
        logger.exception("Unhandled error while serving request")
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = exc.message if isinstance(exc, ThreadCoreError) else str(exc)
    return HTTPException(status_code=code, detail=detail)
