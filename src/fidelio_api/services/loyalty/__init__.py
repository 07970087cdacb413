"""Loyalty ingestion core exports."""

from .errors import (  # noqa: F401
    ConfigError,
    IdentityResolverError,
    InvalidAmountError,
    LoyaltyEngineError,
    NoActiveCampaignError,
    OperationTimeoutError,
    ShadowExpiredError,
    StorageConflictError,
    StorageError,
    StrategyExecutionError,
    UnknownStrategyError,
)
from .strategies import StrategyRegistry, build_default_registry  # noqa: F401
from .store import (  # noqa: F401
    ConversionStats,
    ExpirationMetrics,
    LoyaltyLedgerStore,
    atomic_unit,
)
from .identity import (  # noqa: F401
    HttpIdentityResolver,
    IdentityResolver,
    UnregisteredIdentityResolver,
    hash_phone,
)
from .ingestion import IngestionEngine  # noqa: F401
from .conversion import ConversionResult, ConversionService, merge_states  # noqa: F401
