"""Worker wiring for shadow balance expiration sweeps."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from fidelio_api.core.settings import settings
from fidelio_api.observability.shadow_ledger import (
    ShadowLedgerObservabilityStore,
    get_shadow_ledger_store,
)
from fidelio_api.observability.tracing import get_tracer
from fidelio_api.services.loyalty.errors import LoyaltyEngineError
from fidelio_api.services.loyalty.store import LoyaltyLedgerStore, atomic_unit, utcnow

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


@dataclass(slots=True)
class ShadowSweepSummary:
    found: int = 0
    expired: int = 0
    errors: int = 0
    skipped: int = 0
    breakage_by_merchant: Dict[str, Decimal] = field(default_factory=lambda: defaultdict(Decimal))
    duration_seconds: float = 0.0

    @property
    def total_breakage(self) -> Decimal:
        return sum(self.breakage_by_merchant.values(), Decimal("0"))

    def as_dict(self) -> Dict[str, object]:
        return {
            "found": self.found,
            "expired": self.expired,
            "errors": self.errors,
            "skipped": self.skipped,
            "total_breakage": float(self.total_breakage),
            "breakage_by_merchant": {key: float(value) for key, value in self.breakage_by_merchant.items()},
            "duration_seconds": self.duration_seconds,
        }


class ShadowExpirationWorker:
    """Periodically forfeits shadow balances whose TTL elapsed, recording breakage."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        observability: ShadowLedgerObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.expiration_worker_interval_seconds
        self._observability = observability or get_shadow_ledger_store()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Shadow expiration worker started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Signal cancellation and wait for the in-flight sweep to finish."""

        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Shadow expiration worker stopped")

    async def run_once(self, *, now: datetime | None = None) -> ShadowSweepSummary:
        """Expire every overdue shadow balance, each in its own atomic unit."""

        started = time.perf_counter()
        horizon = now or utcnow()
        summary = ShadowSweepSummary()

        with get_tracer().start_as_current_span("loyalty.expiration_sweep") as span:
            session = await self._ensure_session()
            async with session as managed_session:
                async with atomic_unit(managed_session):
                    candidates = await LoyaltyLedgerStore(managed_session).get_expired_shadow_balances(horizon)
                    pending = [(shadow.id, shadow.merchant_id) for shadow in candidates]

            summary.found = len(pending)
            if not pending:
                logger.info("No expired shadow balances found")
            for shadow_id, merchant_id in pending:
                await self._expire_one(shadow_id, merchant_id, horizon, summary)

            summary.duration_seconds = round(time.perf_counter() - started, 4)
            span.set_attribute("loyalty.expired", summary.expired)
            span.set_attribute("loyalty.errors", summary.errors)

        for merchant_id, amount in summary.breakage_by_merchant.items():
            logger.info("Merchant breakage calculated", merchant_id=merchant_id, breakage_amount=str(amount))

        self._observability.record_sweep(
            expired=summary.expired,
            errors=summary.errors,
            skipped=summary.skipped,
            breakage_by_merchant=summary.breakage_by_merchant,
        )
        logger.info(
            "Shadow expiration sweep completed",
            found=summary.found,
            success_count=summary.expired,
            error_count=summary.errors,
            skipped_count=summary.skipped,
            total_breakage=str(summary.total_breakage),
            duration_seconds=summary.duration_seconds,
        )
        return summary

    async def _expire_one(self, shadow_id, merchant_id, horizon: datetime, summary: ShadowSweepSummary) -> None:
        try:
            session = await self._ensure_session()
            async with session as managed_session:
                async with atomic_unit(managed_session):
                    entry = await LoyaltyLedgerStore(managed_session).expire_shadow_balance(shadow_id, now=horizon)
        except LoyaltyEngineError as exc:
            summary.errors += 1
            logger.error(
                "Failed to expire shadow balance",
                shadow_id=str(shadow_id),
                merchant_id=str(merchant_id),
                error=str(exc),
            )
            return

        if entry is None:
            summary.skipped += 1
            logger.info(
                "Shadow balance finalized elsewhere; skipping",
                shadow_id=str(shadow_id),
                merchant_id=str(merchant_id),
            )
            return

        summary.expired += 1
        summary.breakage_by_merchant[str(merchant_id)] += -Decimal(str(entry.amount))

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Shadow expiration iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["ShadowExpirationWorker", "ShadowSweepSummary"]
