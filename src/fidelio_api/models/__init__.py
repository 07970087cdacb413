"""SQLAlchemy models package."""

# Import all models
from .merchant import Merchant  # noqa: F401
from .loyalty import (  # noqa: F401
    Campaign,
    CampaignType,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    ShadowBalance,
    Wallet,
)
