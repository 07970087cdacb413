from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from fidelio_api.models.loyalty import (
    LoyaltyTransaction,
    LoyaltyTransactionType,
    ShadowBalance,
    Wallet,
)
from fidelio_api.models.merchant import Merchant
from fidelio_api.observability.shadow_ledger import get_shadow_ledger_store
from fidelio_api.services.loyalty import (
    ConversionService,
    LoyaltyLedgerStore,
    StorageConflictError,
    StorageError,
    hash_phone,
    merge_states,
)

PHONE_HASH = hash_phone("+5511988887777")


def test_merge_with_empty_side_returns_other_verbatim() -> None:
    shadow_state = {"current_punches": 2, "total_redeemed": 0}

    assert merge_states({}, shadow_state) == shadow_state
    assert merge_states(None, shadow_state) == shadow_state
    assert merge_states(shadow_state, {}) == shadow_state


def test_merge_sums_numeric_keys_and_keeps_wallet_values() -> None:
    wallet_state = {"transaction_count": 4, "total_points": 120.5, "label": "vip", "flag": True}
    shadow_state = {"transaction_count": 2, "total_points": 30, "label": "new", "flag": True, "extra": 1}

    merged = merge_states(wallet_state, shadow_state)

    assert merged == {
        "transaction_count": 6,
        "total_points": 150.5,
        "label": "vip",
        "flag": True,
        "extra": 1,
    }
    assert wallet_state["transaction_count"] == 4


async def _seed_shadow(session_factory, merchant_id, amount, state, *, expires_in=timedelta(hours=24)):
    async with session_factory() as session:
        shadow = ShadowBalance(
            merchant_id=merchant_id,
            phone_hash=PHONE_HASH,
            amount=Decimal(amount),
            state=state,
            expires_at=datetime.now(timezone.utc) + expires_in,
        )
        session.add(shadow)
        await session.commit()
    return shadow


async def _add_merchant(session_factory, name: str) -> Merchant:
    async with session_factory() as session:
        merchant = Merchant(name=name, api_key=f"key-{uuid4().hex}", settings_json={})
        session.add(merchant)
        await session.commit()
    return merchant


@pytest.mark.asyncio
async def test_conversion_across_two_merchants(session_factory, merchant) -> None:
    other = await _add_merchant(session_factory, "Book Nook")
    first = await _seed_shadow(session_factory, merchant.id, "12.50", {"total_earned": 12.5, "total_redeemed": 0})
    second = await _seed_shadow(session_factory, other.id, "40", {"current_punches": 2, "total_redeemed": 1})
    customer_id = uuid4()
    service = ConversionService(session_factory)

    result = await service.convert_shadow_to_real_wallet(customer_id, PHONE_HASH)

    assert result.converted_balances == 2
    assert result.converted_amount == Decimal("52.50")

    async with session_factory() as session:
        wallets = {
            wallet.merchant_id: wallet
            for wallet in (await session.execute(select(Wallet))).scalars().all()
        }
        converts = (
            await session.execute(
                select(LoyaltyTransaction).where(
                    LoyaltyTransaction.transaction_type == LoyaltyTransactionType.CONVERT
                )
            )
        ).scalars().all()
        active = await LoyaltyLedgerStore(session).get_active_shadow_balances_by_phone(PHONE_HASH)

    assert set(wallets) == {merchant.id, other.id}
    assert wallets[merchant.id].user_id == customer_id
    assert wallets[merchant.id].balance == Decimal("12.50")
    assert wallets[other.id].state == {"current_punches": 2, "total_redeemed": 1}
    assert len(converts) == 2
    assert {entry.shadow_balance_id for entry in converts} == {first.id, second.id}
    assert all(entry.wallet_id is not None and entry.amount > 0 for entry in converts)
    assert all(entry.metadata_json["converted_from_shadow"] == str(entry.shadow_balance_id) for entry in converts)
    assert active == []
    assert get_shadow_ledger_store().snapshot().conversions["balances"] == 2


def _fail_on_second_call(method_name: str, failure):
    original = getattr(LoyaltyLedgerStore, method_name)
    calls: list[int] = []

    async def wrapper(self, *args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            return failure()
        return await original(self, *args, **kwargs)

    return wrapper


def _raise_storage_error():
    raise StorageError("disk full")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method_name,failure,expected",
    [
        ("append_ledger_entry", _raise_storage_error, StorageError),
        ("mark_shadow_converted", lambda: False, StorageConflictError),
    ],
)
async def test_failure_on_second_shadow_rolls_back_whole_conversion(
    session_factory, merchant, monkeypatch, method_name, failure, expected
) -> None:
    other = await _add_merchant(session_factory, "Corner Cafe")
    await _seed_shadow(session_factory, merchant.id, "12.50", {"total_earned": 12.5})
    await _seed_shadow(session_factory, other.id, "40", {"current_punches": 2})
    monkeypatch.setattr(LoyaltyLedgerStore, method_name, _fail_on_second_call(method_name, failure))

    with pytest.raises(expected):
        await ConversionService(session_factory).convert_shadow_to_real_wallet(uuid4(), PHONE_HASH)

    async with session_factory() as session:
        wallets = (await session.execute(select(Wallet))).scalars().all()
        entries = (await session.execute(select(LoyaltyTransaction))).scalars().all()
        shadows = (await session.execute(select(ShadowBalance))).scalars().all()

    assert wallets == []
    assert entries == []
    assert len(shadows) == 2
    assert all(shadow.converted_at is None for shadow in shadows)
    assert get_shadow_ledger_store().snapshot().conversions["balances"] == 0.0

    monkeypatch.undo()
    retry = await ConversionService(session_factory).convert_shadow_to_real_wallet(uuid4(), PHONE_HASH)
    assert retry.converted_balances == 2


@pytest.mark.asyncio
async def test_conversion_merges_into_existing_wallet(session_factory, merchant) -> None:
    customer_id = uuid4()
    async with session_factory() as session:
        session.add(
            Wallet(
                merchant_id=merchant.id,
                user_id=customer_id,
                phone_hash=PHONE_HASH,
                balance=Decimal("100"),
                state={"transaction_count": 5, "current_tier": 1, "total_points": 100.0},
            )
        )
        await session.commit()
    await _seed_shadow(
        session_factory,
        merchant.id,
        "15",
        {"transaction_count": 2, "current_tier": 0, "total_points": 15.0},
    )

    await ConversionService(session_factory).convert_shadow_to_real_wallet(customer_id, PHONE_HASH)

    async with session_factory() as session:
        wallet = (await session.execute(select(Wallet))).scalar_one()

    assert wallet.balance == Decimal("115.00")
    assert wallet.state == {"transaction_count": 7, "current_tier": 1, "total_points": 115.0}


@pytest.mark.asyncio
async def test_rerun_is_a_noop(session_factory, merchant) -> None:
    await _seed_shadow(session_factory, merchant.id, "8", {})
    customer_id = uuid4()
    service = ConversionService(session_factory)

    await service.convert_shadow_to_real_wallet(customer_id, PHONE_HASH)
    rerun = await service.convert_shadow_to_real_wallet(customer_id, PHONE_HASH)

    assert rerun.converted_balances == 0
    async with session_factory() as session:
        entries = (await session.execute(select(LoyaltyTransaction))).scalars().all()
        wallet = (await session.execute(select(Wallet))).scalar_one()

    assert len(entries) == 1
    assert wallet.balance == Decimal("8.00")


@pytest.mark.asyncio
async def test_no_shadow_balances_is_success(session_factory) -> None:
    result = await ConversionService(session_factory).convert_shadow_to_real_wallet(uuid4(), PHONE_HASH)

    assert result.converted_balances == 0
    assert result.wallet_ids == []


@pytest.mark.asyncio
async def test_expired_shadow_is_not_converted(session_factory, merchant) -> None:
    await _seed_shadow(session_factory, merchant.id, "30", {}, expires_in=timedelta(hours=-1))

    result = await ConversionService(session_factory).convert_shadow_to_real_wallet(uuid4(), PHONE_HASH)

    assert result.converted_balances == 0
    async with session_factory() as session:
        assert (await session.execute(select(Wallet))).scalars().all() == []


@pytest.mark.asyncio
async def test_conversion_stats_reports_converted_and_expired(session_factory, merchant) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        session.add_all(
            [
                ShadowBalance(
                    merchant_id=merchant.id,
                    phone_hash="a" * 64,
                    amount=Decimal("10"),
                    state={},
                    expires_at=now + timedelta(hours=10),
                    converted_at=now - timedelta(hours=1),
                ),
                ShadowBalance(
                    merchant_id=merchant.id,
                    phone_hash="b" * 64,
                    amount=Decimal("4"),
                    state={},
                    expires_at=now - timedelta(hours=2),
                    converted_at=now - timedelta(hours=1),
                ),
                ShadowBalance(
                    merchant_id=merchant.id,
                    phone_hash="c" * 64,
                    amount=Decimal("6"),
                    state={},
                    expires_at=now + timedelta(hours=3),
                ),
            ]
        )
        await session.commit()

    stats = await ConversionService(session_factory).get_conversion_stats(merchant.id)

    assert stats.total_shadow_balances == 3
    assert stats.converted_balances == 1
    assert stats.expired_balances == 1
    assert stats.active_shadow_balances == 1
    assert stats.total_converted_amount == Decimal("10")
    assert stats.total_breakage_amount == Decimal("4")
    assert stats.conversion_rate == pytest.approx(33.33)
