"""Persistence boundary for wallets, shadow balances and the loyalty ledger.

All mutating methods expect to run inside :func:`atomic_unit`. Shadow balance
writes are conditional on the row still being active so that a foreground earn
and a background expiration sweep can never both apply to the same row.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fidelio_api.models.loyalty import (
    Campaign,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    ShadowBalance,
    Wallet,
)
from fidelio_api.services.loyalty.errors import StorageConflictError, StorageError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps returned by backends without tz support."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_shadow_expired(shadow: ShadowBalance, now: datetime) -> bool:
    expires_at = ensure_utc(shadow.expires_at)
    return expires_at is not None and expires_at <= now


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@asynccontextmanager
async def atomic_unit(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the enclosed block as one transaction, translating driver failures."""

    try:
        async with session.begin():
            yield session
    except IntegrityError as exc:
        raise StorageConflictError(f"conflicting write rejected by storage: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise StorageError(f"storage operation failed: {exc}") from exc


@dataclass(slots=True)
class ConversionStats:
    total_shadow_balances: int
    converted_balances: int
    expired_balances: int
    active_shadow_balances: int
    total_converted_amount: Decimal
    total_breakage_amount: Decimal
    conversion_rate: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_shadow_balances": self.total_shadow_balances,
            "converted_balances": self.converted_balances,
            "expired_balances": self.expired_balances,
            "active_shadow_balances": self.active_shadow_balances,
            "total_converted_amount": float(self.total_converted_amount),
            "total_breakage_amount": float(self.total_breakage_amount),
            "conversion_rate": self.conversion_rate,
        }


@dataclass(slots=True)
class ExpirationMetrics:
    total_expired: int
    total_breakage: Decimal
    average_breakage: Decimal


class LoyaltyLedgerStore:
    """Repository over one ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def get_active_campaign(self, merchant_id: UUID, *, now: datetime | None = None) -> Campaign | None:
        """Return the merchant's running campaign, preferring the most recently created."""

        horizon = now or utcnow()
        stmt = (
            select(Campaign)
            .where(
                Campaign.merchant_id == merchant_id,
                Campaign.is_active.is_(True),
                or_(Campaign.starts_at.is_(None), Campaign.starts_at <= horizon),
                or_(Campaign.ends_at.is_(None), Campaign.ends_at >= horizon),
            )
            .order_by(Campaign.created_at.desc())
            .limit(2)
        )
        result = await self._session.execute(stmt)
        campaigns = list(result.scalars().all())
        if not campaigns:
            return None
        if len(campaigns) > 1:
            logger.warning(
                "Multiple active campaigns for merchant; using most recent",
                merchant_id=str(merchant_id),
                campaign_id=str(campaigns[0].id),
            )
        return campaigns[0]

    async def get_or_create_wallet(self, merchant_id: UUID, customer_id: UUID, phone_hash: str) -> Wallet:
        stmt = (
            select(Wallet)
            .where(Wallet.merchant_id == merchant_id, Wallet.user_id == customer_id)
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        wallet = result.scalar_one_or_none()
        if wallet is not None:
            return wallet

        wallet = Wallet(
            merchant_id=merchant_id,
            user_id=customer_id,
            phone_hash=phone_hash,
            balance=Decimal("0"),
            state={},
        )
        self._session.add(wallet)
        await self._session.flush()
        logger.info(
            "Created wallet",
            merchant_id=str(merchant_id),
            wallet_id=str(wallet.id),
            customer_id=str(customer_id),
        )
        return wallet

    async def update_wallet(self, wallet: Wallet, *, balance: Decimal, state: dict[str, Any]) -> Wallet:
        wallet.balance = balance
        wallet.state = dict(state)
        wallet.updated_at = utcnow()
        await self._session.flush()
        return wallet

    async def get_or_create_shadow_balance(
        self,
        merchant_id: UUID,
        phone_hash: str,
        ttl: timedelta,
        *,
        now: datetime | None = None,
    ) -> ShadowBalance:
        """Return the active shadow balance for the pair, opening one with ``now + ttl`` if absent."""

        stmt = (
            select(ShadowBalance)
            .where(
                ShadowBalance.merchant_id == merchant_id,
                ShadowBalance.phone_hash == phone_hash,
                ShadowBalance.converted_at.is_(None),
            )
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        shadow = result.scalar_one_or_none()
        if shadow is not None:
            return shadow

        opened_at = now or utcnow()
        shadow = ShadowBalance(
            merchant_id=merchant_id,
            phone_hash=phone_hash,
            amount=Decimal("0"),
            state={},
            expires_at=opened_at + ttl,
        )
        self._session.add(shadow)
        await self._session.flush()
        logger.info(
            "Opened shadow balance",
            merchant_id=str(merchant_id),
            shadow_id=str(shadow.id),
            expires_at=shadow.expires_at.isoformat(),
        )
        return shadow

    async def update_shadow_balance(
        self,
        shadow: ShadowBalance,
        *,
        amount: Decimal,
        state: dict[str, Any],
        now: datetime | None = None,
    ) -> ShadowBalance:
        """Apply a new amount/state only while the row is still active and unexpired."""

        horizon = now or utcnow()
        stmt = (
            update(ShadowBalance)
            .where(
                ShadowBalance.id == shadow.id,
                ShadowBalance.converted_at.is_(None),
                ShadowBalance.expires_at > horizon,
            )
            .values(amount=amount, state=dict(state))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise StorageConflictError(f"shadow balance {shadow.id} is no longer active")
        await self._session.refresh(shadow)
        return shadow

    async def get_active_shadow_balances_by_phone(
        self,
        phone_hash: str,
        *,
        now: datetime | None = None,
        lock: bool = False,
    ) -> list[ShadowBalance]:
        horizon = now or utcnow()
        stmt = (
            select(ShadowBalance)
            .where(
                ShadowBalance.phone_hash == phone_hash,
                ShadowBalance.converted_at.is_(None),
                ShadowBalance.expires_at > horizon,
            )
            .order_by(ShadowBalance.created_at.asc())
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_shadow_converted(
        self,
        shadow_id: UUID,
        *,
        now: datetime | None = None,
        expired: bool = False,
    ) -> bool:
        """Finalize an active shadow balance.

        With ``expired=False`` the row must still be live (conversion); with
        ``expired=True`` it must be past its TTL (sweep). Returns whether the row
        was claimed by this call.
        """

        horizon = now or utcnow()
        expiry_clause = ShadowBalance.expires_at <= horizon if expired else ShadowBalance.expires_at > horizon
        stmt = (
            update(ShadowBalance)
            .where(
                ShadowBalance.id == shadow_id,
                ShadowBalance.converted_at.is_(None),
                expiry_clause,
            )
            .values(converted_at=horizon)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def get_expired_shadow_balances(
        self,
        now: datetime | None = None,
        *,
        limit: int | None = None,
    ) -> list[ShadowBalance]:
        horizon = now or utcnow()
        stmt = (
            select(ShadowBalance)
            .where(
                ShadowBalance.converted_at.is_(None),
                ShadowBalance.expires_at <= horizon,
            )
            .order_by(ShadowBalance.expires_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def append_ledger_entry(
        self,
        *,
        merchant_id: UUID,
        transaction_type: LoyaltyTransactionType,
        amount: Decimal,
        campaign_id: UUID | None = None,
        wallet_id: UUID | None = None,
        shadow_balance_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoyaltyTransaction:
        """Insert an immutable ledger row."""

        if transaction_type == LoyaltyTransactionType.EARN:
            if (wallet_id is None) == (shadow_balance_id is None):
                raise ValueError("EARN entries reference exactly one of wallet or shadow balance")
        elif transaction_type == LoyaltyTransactionType.EXPIRE:
            if shadow_balance_id is None or wallet_id is not None:
                raise ValueError("EXPIRE entries reference only the shadow balance")
            if amount > 0:
                raise ValueError("EXPIRE entries carry a non-positive breakage amount")
        elif transaction_type == LoyaltyTransactionType.CONVERT:
            if shadow_balance_id is None:
                raise ValueError("CONVERT entries must reference the shadow balance")
            if amount < 0:
                raise ValueError("CONVERT entries carry a non-negative amount")

        entry = LoyaltyTransaction(
            merchant_id=merchant_id,
            campaign_id=campaign_id,
            wallet_id=wallet_id,
            shadow_balance_id=shadow_balance_id,
            transaction_type=transaction_type,
            amount=amount,
            metadata_json=metadata or {},
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def expire_shadow_balance(
        self,
        shadow_id: UUID,
        *,
        now: datetime | None = None,
    ) -> LoyaltyTransaction | None:
        """Forfeit one expired shadow balance; ``None`` when another writer finalized it first."""

        horizon = now or utcnow()
        stmt = select(ShadowBalance).where(ShadowBalance.id == shadow_id).with_for_update()
        result = await self._session.execute(stmt)
        shadow = result.scalar_one_or_none()
        if shadow is None or shadow.converted_at is not None or not is_shadow_expired(shadow, horizon):
            return None

        claimed = await self.mark_shadow_converted(shadow.id, now=horizon, expired=True)
        if not claimed:
            return None

        breakage = _to_decimal(shadow.amount)
        return await self.append_ledger_entry(
            merchant_id=shadow.merchant_id,
            transaction_type=LoyaltyTransactionType.EXPIRE,
            amount=-breakage,
            shadow_balance_id=shadow.id,
            metadata={
                "expired_at": horizon.isoformat(),
                "expires_at": ensure_utc(shadow.expires_at).isoformat(),
            },
        )

    async def conversion_stats(self, merchant_id: UUID, *, now: datetime | None = None) -> ConversionStats:
        horizon = now or utcnow()
        finalized = ShadowBalance.converted_at.is_not(None)
        expired = finalized & (ShadowBalance.converted_at > ShadowBalance.expires_at)
        converted = finalized & (ShadowBalance.converted_at <= ShadowBalance.expires_at)
        stmt = select(
            func.count(ShadowBalance.id),
            func.count(case((converted, 1))),
            func.count(case((expired, 1))),
            func.count(case(((ShadowBalance.converted_at.is_(None)) & (ShadowBalance.expires_at > horizon), 1))),
            func.coalesce(func.sum(case((converted, ShadowBalance.amount), else_=0)), 0),
            func.coalesce(func.sum(case((expired, ShadowBalance.amount), else_=0)), 0),
        ).where(ShadowBalance.merchant_id == merchant_id)
        row = (await self._session.execute(stmt)).one()

        total, converted_count, expired_count, active_count, converted_amount, breakage_amount = row
        total = int(total or 0)
        rate = (int(converted_count or 0) / total * 100) if total else 0.0
        return ConversionStats(
            total_shadow_balances=total,
            converted_balances=int(converted_count or 0),
            expired_balances=int(expired_count or 0),
            active_shadow_balances=int(active_count or 0),
            total_converted_amount=_to_decimal(converted_amount),
            total_breakage_amount=_to_decimal(breakage_amount),
            conversion_rate=round(rate, 2),
        )

    async def expiration_metrics(self) -> ExpirationMetrics:
        stmt = select(
            func.count(LoyaltyTransaction.id),
            func.coalesce(func.sum(LoyaltyTransaction.amount), 0),
        ).where(LoyaltyTransaction.transaction_type == LoyaltyTransactionType.EXPIRE)
        total_expired, signed_total = (await self._session.execute(stmt)).one()
        total_expired = int(total_expired or 0)
        total_breakage = Decimal("0") - _to_decimal(signed_total)
        average = (total_breakage / total_expired).quantize(Decimal("0.01")) if total_expired else Decimal("0")
        return ExpirationMetrics(
            total_expired=total_expired,
            total_breakage=total_breakage,
            average_breakage=average,
        )

    async def list_ledger_entries(
        self,
        *,
        wallet_id: UUID | None = None,
        shadow_balance_id: UUID | None = None,
    ) -> Sequence[LoyaltyTransaction]:
        stmt = select(LoyaltyTransaction).order_by(LoyaltyTransaction.created_at.asc())
        if wallet_id is not None:
            stmt = stmt.where(LoyaltyTransaction.wallet_id == wallet_id)
        if shadow_balance_id is not None:
            stmt = stmt.where(LoyaltyTransaction.shadow_balance_id == shadow_balance_id)
        result = await self._session.execute(stmt)
        return result.scalars().all()


__all__ = [
    "ConversionStats",
    "ExpirationMetrics",
    "LoyaltyLedgerStore",
    "atomic_unit",
    "ensure_utc",
    "is_shadow_expired",
    "utcnow",
]
