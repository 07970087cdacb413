"""Migration of shadow balances into real wallets once a customer registers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from numbers import Number
from typing import Any, Callable, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from fidelio_api.models.loyalty import LoyaltyTransactionType
from fidelio_api.observability.shadow_ledger import (
    ShadowLedgerObservabilityStore,
    get_shadow_ledger_store,
)
from fidelio_api.observability.tracing import get_tracer
from fidelio_api.services.loyalty.errors import OperationTimeoutError, StorageConflictError
from fidelio_api.services.loyalty.store import (
    ConversionStats,
    ExpirationMetrics,
    LoyaltyLedgerStore,
    atomic_unit,
    utcnow,
)
from fidelio_api.services.loyalty.strategies import quantize_amount

SessionFactory = Callable[[], AsyncSession]


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def merge_states(wallet_state: Mapping[str, Any] | None, shadow_state: Mapping[str, Any] | None) -> dict[str, Any]:
    """Combine strategy progress from a wallet and a shadow balance.

    An empty side yields the other side verbatim. Otherwise numeric values on
    shared keys are summed, wallet values win for everything else and
    shadow-only keys are added.
    """

    if not wallet_state:
        return dict(shadow_state or {})
    if not shadow_state:
        return dict(wallet_state)

    merged = dict(wallet_state)
    for key, value in shadow_state.items():
        if key not in merged:
            merged[key] = value
        elif _is_number(value) and _is_number(merged[key]):
            merged[key] = merged[key] + value
    return merged


@dataclass(slots=True)
class ConversionResult:
    customer_id: UUID
    converted_balances: int = 0
    converted_amount: Decimal = Decimal("0")
    wallet_ids: list[UUID] = field(default_factory=list)


class ConversionService:
    """Move every active shadow balance for a phone hash into the customer's wallets."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        timeout_seconds: float | None = None,
        observability: ShadowLedgerObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds
        self._observability = observability or get_shadow_ledger_store()

    async def convert_shadow_to_real_wallet(
        self,
        customer_id: UUID,
        phone_hash: str,
        *,
        timeout_seconds: float | None = None,
    ) -> ConversionResult:
        """Convert all active shadow balances in one atomic unit.

        Safe to call repeatedly: converted rows drop out of the active query,
        so a rerun with nothing left to convert succeeds without writing.
        """

        deadline = timeout_seconds if timeout_seconds is not None else self._timeout_seconds
        with get_tracer().start_as_current_span("loyalty.convert") as span:
            span.set_attribute("loyalty.customer_id", str(customer_id))
            operation = self._convert(customer_id, phone_hash)
            if deadline is None:
                result = await operation
            else:
                try:
                    result = await asyncio.wait_for(operation, timeout=deadline)
                except asyncio.TimeoutError as exc:
                    raise OperationTimeoutError(f"conversion exceeded its {deadline:.1f}s deadline") from exc
            span.set_attribute("loyalty.converted_balances", result.converted_balances)

        if result.converted_balances:
            self._observability.record_conversion(result.converted_balances, result.converted_amount)
        return result

    async def _convert(self, customer_id: UUID, phone_hash: str) -> ConversionResult:
        result = ConversionResult(customer_id=customer_id)
        now = utcnow()
        async with self._session_factory() as session:
            async with atomic_unit(session):
                store = LoyaltyLedgerStore(session)
                shadows = await store.get_active_shadow_balances_by_phone(phone_hash, now=now, lock=True)
                if not shadows:
                    logger.info(
                        "No shadow balances to convert",
                        customer_id=str(customer_id),
                        phone_hash_prefix=phone_hash[:8],
                    )
                    return result

                for shadow in shadows:
                    wallet = await store.get_or_create_wallet(shadow.merchant_id, customer_id, phone_hash)
                    shadow_amount = Decimal(str(shadow.amount or 0))
                    new_balance = quantize_amount(Decimal(str(wallet.balance or 0)) + shadow_amount)
                    await store.update_wallet(
                        wallet,
                        balance=new_balance,
                        state=merge_states(wallet.state, shadow.state),
                    )

                    claimed = await store.mark_shadow_converted(shadow.id, now=now)
                    if not claimed:
                        raise StorageConflictError(f"shadow balance {shadow.id} was finalized concurrently")

                    await store.append_ledger_entry(
                        merchant_id=shadow.merchant_id,
                        transaction_type=LoyaltyTransactionType.CONVERT,
                        amount=shadow_amount,
                        wallet_id=wallet.id,
                        shadow_balance_id=shadow.id,
                        metadata={
                            "converted_from_shadow": str(shadow.id),
                            "conversion_date": now.isoformat(),
                        },
                    )

                    result.converted_balances += 1
                    result.converted_amount += shadow_amount
                    result.wallet_ids.append(wallet.id)
                    logger.info(
                        "Converted shadow balance",
                        merchant_id=str(shadow.merchant_id),
                        shadow_id=str(shadow.id),
                        wallet_id=str(wallet.id),
                        amount=str(shadow_amount),
                    )

        logger.info(
            "Shadow conversion completed",
            customer_id=str(customer_id),
            converted_balances=result.converted_balances,
            converted_amount=str(result.converted_amount),
        )
        return result

    async def get_conversion_stats(self, merchant_id: UUID) -> ConversionStats:
        async with self._session_factory() as session:
            async with atomic_unit(session):
                return await LoyaltyLedgerStore(session).conversion_stats(merchant_id)

    async def get_expiration_metrics(self) -> ExpirationMetrics:
        async with self._session_factory() as session:
            async with atomic_unit(session):
                return await LoyaltyLedgerStore(session).expiration_metrics()


__all__ = ["ConversionResult", "ConversionService", "merge_states"]
