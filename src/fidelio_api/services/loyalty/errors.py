"""Error taxonomy for ingestion, conversion and strategy evaluation."""

from __future__ import annotations


class LoyaltyEngineError(RuntimeError):
    """Base exception for the loyalty ingestion core.

    ``client_fixable`` errors are caused by the caller or the merchant's setup;
    ``retryable`` errors may succeed when the same call is repeated.
    """

    code = "loyalty_error"
    retryable = False
    client_fixable = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    def as_dict(self) -> dict[str, object]:
        return {"code": self.code, "message": str(self), "retryable": self.retryable}


class ConfigError(LoyaltyEngineError):
    """Campaign configuration failed to parse or violates strategy rules."""

    code = "invalid_campaign_config"
    client_fixable = True


class StrategyExecutionError(LoyaltyEngineError):
    """A strategy could not evaluate a purchase against its campaign."""

    code = "strategy_execution_failed"


class InvalidAmountError(LoyaltyEngineError):
    code = "invalid_amount"
    client_fixable = True


class NoActiveCampaignError(LoyaltyEngineError):
    code = "no_active_campaign"
    client_fixable = True


class UnknownStrategyError(LoyaltyEngineError):
    """No strategy is registered for a campaign type; indicates a configuration bug."""

    code = "unknown_strategy"
    client_fixable = True


class ShadowExpiredError(LoyaltyEngineError):
    """The caller's shadow balance passed its TTL before the purchase was applied."""

    code = "shadow_balance_expired"
    retryable = True
    client_fixable = True


class IdentityResolverError(LoyaltyEngineError):
    code = "identity_resolver_unavailable"
    retryable = True


class StorageError(LoyaltyEngineError):
    """An atomic unit failed and was rolled back in full."""

    code = "storage_error"
    retryable = True


class StorageConflictError(StorageError):
    """A conditional update matched no row or a uniqueness constraint fired."""

    code = "storage_conflict"


class OperationTimeoutError(StorageError):
    code = "deadline_exceeded"


__all__ = [
    "ConfigError",
    "IdentityResolverError",
    "InvalidAmountError",
    "LoyaltyEngineError",
    "NoActiveCampaignError",
    "OperationTimeoutError",
    "ShadowExpiredError",
    "StorageConflictError",
    "StorageError",
    "StrategyExecutionError",
    "UnknownStrategyError",
]
