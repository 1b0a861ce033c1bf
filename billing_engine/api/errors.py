"""Translation of domain exceptions into HTTP errors"""

import logging

from fastapi import HTTPException

from billing_engine.domain.exceptions import (
    ArchivalInvariantViolation,
    DomainException,
    InsufficientDeposit,
    NotFound,
    TransactionConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)


def to_http_error(error: DomainException, request_id: str) -> HTTPException:
    """Client errors are logged as warnings, faults as errors"""
    if isinstance(error, ValidationError):
        logger.warning(f"Validation error: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, NotFound):
        logger.warning(f"Not found: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InsufficientDeposit):
        logger.warning(f"Insufficient deposit: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, TransactionConflict):
        logger.error(f"Transaction conflict: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail="Concurrent update, please retry")
    if isinstance(error, ArchivalInvariantViolation):
        logger.error(f"Archival invariant violated: {error}", extra={"request_id": request_id})
    else:
        logger.error(f"Unexpected domain error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")


def unexpected_error(error: Exception, request_id: str) -> HTTPException:
    """Anything outside the domain tree: database driver failures, bugs"""
    logger.error(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
