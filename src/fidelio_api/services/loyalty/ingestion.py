"""Purchase ingestion: campaign lookup, real-vs-shadow branching and atomic ledger writes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from fidelio_api.models.loyalty import Campaign, LoyaltyTransactionType
from fidelio_api.observability.shadow_ledger import (
    ShadowLedgerObservabilityStore,
    get_shadow_ledger_store,
)
from fidelio_api.observability.tracing import get_tracer
from fidelio_api.schemas.ingest import IngestRequest, IngestResponse, RewardPayload
from fidelio_api.services.loyalty.errors import (
    IdentityResolverError,
    InvalidAmountError,
    LoyaltyEngineError,
    NoActiveCampaignError,
    OperationTimeoutError,
    ShadowExpiredError,
)
from fidelio_api.services.loyalty.identity import IdentityResolver, hash_phone
from fidelio_api.services.loyalty.store import (
    LoyaltyLedgerStore,
    atomic_unit,
    ensure_utc,
    is_shadow_expired,
    utcnow,
)
from fidelio_api.services.loyalty.strategies import (
    RewardStrategy,
    StrategyInput,
    StrategyRegistry,
    StrategyResult,
    quantize_amount,
)

SessionFactory = Callable[[], AsyncSession]

REAL_WALLET_MESSAGE = "Transaction processed successfully!"
SHADOW_WALLET_MESSAGE = "Temporary balance created! Register before {expires_at:%d/%m/%Y %H:%M} to keep your rewards."


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


class IngestionEngine:
    """Apply one purchase event to a merchant's active campaign.

    The engine holds no per-call state. Each call opens its own sessions from
    ``session_factory`` and runs exactly one atomic unit that updates a wallet
    or shadow balance together with its EARN ledger entry.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        registry: StrategyRegistry,
        identity_resolver: IdentityResolver,
        shadow_ttl: timedelta,
        timeout_seconds: float | None = None,
        observability: ShadowLedgerObservabilityStore | None = None,
    ) -> None:
        if shadow_ttl <= timedelta(0):
            raise ValueError("shadow_ttl must be positive")
        self._session_factory = session_factory
        self._registry = registry
        self._identity = identity_resolver
        self._shadow_ttl = shadow_ttl
        self._timeout_seconds = timeout_seconds
        self._observability = observability or get_shadow_ledger_store()

    async def process_transaction(
        self,
        merchant_id: UUID,
        request: IngestRequest,
        *,
        timeout_seconds: float | None = None,
    ) -> IngestResponse:
        deadline = timeout_seconds if timeout_seconds is not None else self._timeout_seconds
        with get_tracer().start_as_current_span("loyalty.ingest") as span:
            span.set_attribute("loyalty.merchant_id", str(merchant_id))
            try:
                response = await self._with_deadline(self._process(merchant_id, request), deadline)
            except LoyaltyEngineError as exc:
                span.set_attribute("loyalty.error_code", exc.code)
                self._observability.record_ingestion_failure(exc.code)
                raise
            path = "shadow" if response.is_shadow else "real"
            span.set_attribute("loyalty.path", path)
        self._observability.record_ingestion(path, "success")
        return response

    @staticmethod
    async def _with_deadline(operation: Awaitable[IngestResponse], deadline: float | None) -> IngestResponse:
        if deadline is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise OperationTimeoutError(f"ingestion exceeded its {deadline:.1f}s deadline") from exc

    async def _process(self, merchant_id: UUID, request: IngestRequest) -> IngestResponse:
        amount = request.amount
        if amount is None or _as_decimal(amount) <= 0:
            raise InvalidAmountError("amount must be greater than zero")

        campaign = await self._load_campaign(merchant_id)
        strategy = self._registry.resolve(campaign.type)
        phone_hash = hash_phone(request.phone)

        customer_id, registered = await self._resolve_identity(request.phone)

        log = logger.bind(
            merchant_id=str(merchant_id),
            campaign_id=str(campaign.id),
            transaction_id=request.transaction_id,
            phone_hash_prefix=phone_hash[:8],
        )
        if registered and customer_id is not None:
            log.info("Ingesting transaction", path="real")
            return await self._apply_to_wallet(merchant_id, campaign, strategy, customer_id, phone_hash, request)

        log.info("Ingesting transaction", path="shadow")
        return await self._apply_to_shadow(merchant_id, campaign, strategy, phone_hash, request)

    async def _load_campaign(self, merchant_id: UUID) -> Campaign:
        async with self._session_factory() as session:
            async with atomic_unit(session):
                campaign = await LoyaltyLedgerStore(session).get_active_campaign(merchant_id)
        if campaign is None:
            raise NoActiveCampaignError(f"no active campaign for merchant {merchant_id}")
        return campaign

    async def _resolve_identity(self, phone: str) -> tuple[UUID | None, bool]:
        try:
            return await self._identity.user_exists_by_phone(phone)
        except IdentityResolverError:
            raise
        except Exception as exc:
            raise IdentityResolverError(f"failed to check user existence: {exc}") from exc

    @staticmethod
    def _execute(
        strategy: RewardStrategy,
        campaign: Campaign,
        request: IngestRequest,
        current_state: dict[str, Any] | None,
    ) -> StrategyResult:
        return strategy.execute(
            StrategyInput(
                campaign=campaign,
                transaction_id=request.transaction_id,
                amount=_as_decimal(request.amount),
                current_state=current_state,
                metadata=request.metadata,
            )
        )

    @staticmethod
    def _ledger_metadata(request: IngestRequest) -> dict[str, Any]:
        return {**(request.metadata or {}), "transaction_id": request.transaction_id}

    async def _apply_to_wallet(
        self,
        merchant_id: UUID,
        campaign: Campaign,
        strategy: RewardStrategy,
        customer_id: UUID,
        phone_hash: str,
        request: IngestRequest,
    ) -> IngestResponse:
        async with self._session_factory() as session:
            async with atomic_unit(session):
                store = LoyaltyLedgerStore(session)
                wallet = await store.get_or_create_wallet(merchant_id, customer_id, phone_hash)
                result = self._execute(strategy, campaign, request, wallet.state)
                new_balance = quantize_amount(_as_decimal(wallet.balance) + result.balance_delta)
                await store.update_wallet(wallet, balance=new_balance, state=result.new_state)
                await store.append_ledger_entry(
                    merchant_id=merchant_id,
                    transaction_type=LoyaltyTransactionType.EARN,
                    amount=result.balance_delta,
                    campaign_id=campaign.id,
                    wallet_id=wallet.id,
                    metadata=self._ledger_metadata(request),
                )
                wallet_id = wallet.id

        logger.info(
            "Applied transaction to wallet",
            merchant_id=str(merchant_id),
            wallet_id=str(wallet_id),
            balance_delta=str(result.balance_delta),
            state_changed=result.state_changed,
        )
        return IngestResponse(
            success=True,
            message=REAL_WALLET_MESSAGE,
            new_balance=new_balance,
            is_shadow=False,
            reward=_reward_payload(result),
        )

    async def _apply_to_shadow(
        self,
        merchant_id: UUID,
        campaign: Campaign,
        strategy: RewardStrategy,
        phone_hash: str,
        request: IngestRequest,
    ) -> IngestResponse:
        now = utcnow()
        stale_shadow_id: UUID | None = None
        async with self._session_factory() as session:
            async with atomic_unit(session):
                store = LoyaltyLedgerStore(session)
                shadow = await store.get_or_create_shadow_balance(merchant_id, phone_hash, self._shadow_ttl, now=now)
                if is_shadow_expired(shadow, now):
                    stale_shadow_id = shadow.id
                else:
                    result = self._execute(strategy, campaign, request, shadow.state)
                    new_amount = quantize_amount(_as_decimal(shadow.amount) + result.balance_delta)
                    await store.update_shadow_balance(shadow, amount=new_amount, state=result.new_state, now=now)
                    await store.append_ledger_entry(
                        merchant_id=merchant_id,
                        transaction_type=LoyaltyTransactionType.EARN,
                        amount=result.balance_delta,
                        campaign_id=campaign.id,
                        shadow_balance_id=shadow.id,
                        metadata=self._ledger_metadata(request),
                    )
                    shadow_id = shadow.id
                    expires_at = ensure_utc(shadow.expires_at)

        if stale_shadow_id is not None:
            await self._retire_stale_shadow(stale_shadow_id, merchant_id)
            raise ShadowExpiredError(f"shadow balance {stale_shadow_id} expired; retry to open a new one")

        logger.info(
            "Applied transaction to shadow balance",
            merchant_id=str(merchant_id),
            shadow_id=str(shadow_id),
            balance_delta=str(result.balance_delta),
            expires_at=expires_at.isoformat(),
        )
        return IngestResponse(
            success=True,
            message=_shadow_message(expires_at),
            new_balance=new_amount,
            is_shadow=True,
            expires_at=expires_at,
            reward=_reward_payload(result),
        )

    async def _retire_stale_shadow(self, shadow_id: UUID, merchant_id: UUID) -> None:
        """Record breakage for a stale shadow balance so the caller's retry opens a fresh one."""

        try:
            async with self._session_factory() as session:
                async with atomic_unit(session):
                    entry = await LoyaltyLedgerStore(session).expire_shadow_balance(shadow_id)
        except LoyaltyEngineError:
            logger.exception(
                "Failed to retire expired shadow balance; leaving it for the sweep",
                merchant_id=str(merchant_id),
                shadow_id=str(shadow_id),
            )
            return
        if entry is not None:
            logger.info(
                "Retired expired shadow balance",
                merchant_id=str(merchant_id),
                shadow_id=str(shadow_id),
                breakage=str(-entry.amount),
            )


def _reward_payload(result: StrategyResult) -> RewardPayload | None:
    if result.reward is None:
        return None
    return RewardPayload(
        type=result.reward.type,
        amount=result.reward.amount,
        description=result.reward.description,
    )


def _shadow_message(expires_at: datetime) -> str:
    return SHADOW_WALLET_MESSAGE.format(expires_at=expires_at)


__all__ = ["IngestionEngine", "REAL_WALLET_MESSAGE", "SHADOW_WALLET_MESSAGE"]
