"""Campaign, wallet, shadow balance and ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from fidelio_api.db.base import Base


class CampaignType(str, Enum):
    """Reward rule families; each maps to one registered strategy."""

    PUNCH_CARD = "PUNCH_CARD"
    CASHBACK = "CASHBACK"
    PROGRESSIVE = "PROGRESSIVE"


class LoyaltyTransactionType(str, Enum):
    """Ledger entry types."""

    EARN = "EARN"
    REDEEM = "REDEEM"
    EXPIRE = "EXPIRE"
    CONVERT = "CONVERT"


class Campaign(Base):
    """A merchant reward program; read-only to the ingestion core."""

    __tablename__ = "campaigns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(SqlEnum(CampaignType, name="campaign_type"), nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    merchant = relationship("Merchant", back_populates="campaigns")


class Wallet(Base):
    """Permanent balance for a registered customer at one merchant."""

    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("merchant_id", "user_id", name="uq_wallets_merchant_user"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    phone_hash = Column(String(64), nullable=False, index=True)
    balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    state = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ShadowBalance(Base):
    """Temporary balance for a phone number not yet tied to a registered customer.

    ``converted_at`` is set exactly once, either by conversion into a wallet or by
    the expiration sweep. Rows with ``converted_at`` set are terminal.
    """

    __tablename__ = "shadow_balances"
    __table_args__ = (
        Index(
            "uq_shadow_balances_active_merchant_phone",
            "merchant_id",
            "phone_hash",
            unique=True,
            postgresql_where=text("converted_at IS NULL"),
            sqlite_where=text("converted_at IS NULL"),
        ),
        Index("ix_shadow_balances_expiry_sweep", "converted_at", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    phone_hash = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    state = Column(JSON, nullable=False, default=dict)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    converted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class LoyaltyTransaction(Base):
    """Immutable ledger entry; inserted once and never updated."""

    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    wallet_id = Column(UUID(as_uuid=True), ForeignKey("wallets.id", ondelete="SET NULL"), nullable=True, index=True)
    shadow_balance_id = Column(
        UUID(as_uuid=True),
        ForeignKey("shadow_balances.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    transaction_type = Column(SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = [
    "Campaign",
    "CampaignType",
    "LoyaltyTransaction",
    "LoyaltyTransactionType",
    "ShadowBalance",
    "Wallet",
]
