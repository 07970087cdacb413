"""HTTP translation of loyalty engine errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from fidelio_api.services.loyalty.errors import (
    ConfigError,
    IdentityResolverError,
    InvalidAmountError,
    LoyaltyEngineError,
    NoActiveCampaignError,
    OperationTimeoutError,
    ShadowExpiredError,
    StorageConflictError,
    StorageError,
    UnknownStrategyError,
)

# Checked in order; subclasses before their bases.
_STATUS_BY_ERROR: tuple[tuple[type[LoyaltyEngineError], int], ...] = (
    (InvalidAmountError, status.HTTP_400_BAD_REQUEST),
    (NoActiveCampaignError, status.HTTP_404_NOT_FOUND),
    (ConfigError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnknownStrategyError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ShadowExpiredError, status.HTTP_409_CONFLICT),
    (IdentityResolverError, status.HTTP_502_BAD_GATEWAY),
    (OperationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (StorageConflictError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for_error(exc: LoyaltyEngineError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(exc: LoyaltyEngineError) -> HTTPException:
    return HTTPException(status_code=status_for_error(exc), detail=exc.as_dict())


__all__ = ["http_error", "status_for_error"]
