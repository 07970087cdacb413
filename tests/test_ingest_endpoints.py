from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from conftest import create_campaign
from fidelio_api.models.loyalty import CampaignType, LoyaltyTransaction, ShadowBalance, Wallet
from fidelio_api.services.loyalty import IdentityResolverError


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_ingest_shadow_path(app_with_db, merchant) -> None:
    app, session_factory = app_with_db
    await create_campaign(session_factory, merchant.id, CampaignType.CASHBACK, {"percentage": 10})

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/ingest",
            headers={"X-API-Key": merchant.api_key},
            json={"phone": " +5511999990000 ", "transactionId": "pos-1", "amount": 50},
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["isShadow"] is True
    assert Decimal(payload["newBalance"]) == Decimal("5")
    assert payload["expiresAt"] is not None
    assert payload["reward"]["type"] == "cashback"

    async with session_factory() as session:
        shadows = (await session.execute(select(ShadowBalance))).scalars().all()
    assert len(shadows) == 1
    assert shadows[0].merchant_id == merchant.id


@pytest.mark.asyncio
async def test_ingest_registered_customer_uses_wallet(app_with_db, merchant, identity_resolver) -> None:
    app, session_factory = app_with_db
    customer_id = uuid4()
    identity_resolver.registered["+5511888880000"] = customer_id
    await create_campaign(
        session_factory,
        merchant.id,
        CampaignType.PUNCH_CARD,
        {"requiredPunches": 2, "rewardAmount": 15, "rewardType": "free_item"},
    )

    async with _client(app) as client:
        for index in range(2):
            response = await client.post(
                "/api/v1/ingest",
                headers={"X-API-Key": merchant.api_key},
                json={"phone": "+5511888880000", "transactionId": f"pos-{index}", "amount": "12.90"},
            )
            assert response.status_code == 200

    payload = response.json()
    assert payload["isShadow"] is False
    assert payload["expiresAt"] is None
    assert payload["message"] == "Transaction processed successfully!"
    assert payload["reward"]["type"] == "free_item"
    assert Decimal(payload["reward"]["amount"]) == Decimal("15")

    async with session_factory() as session:
        wallet = (await session.execute(select(Wallet))).scalar_one()
        entries = (await session.execute(select(LoyaltyTransaction))).scalars().all()
    assert wallet.user_id == customer_id
    assert wallet.balance == Decimal("15")
    assert len(entries) == 2


@pytest.mark.asyncio
async def test_ingest_requires_api_key(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.post(
            "/api/v1/ingest",
            json={"phone": "+5511999990000", "transactionId": "pos-1", "amount": 10},
        )
        invalid = await client.post(
            "/api/v1/ingest",
            headers={"X-API-Key": "nope"},
            json={"phone": "+5511999990000", "transactionId": "pos-1", "amount": 10},
        )

    assert missing.status_code == 401
    assert invalid.status_code == 401


@pytest.mark.asyncio
async def test_ingest_without_active_campaign_returns_404(app_with_db, merchant, identity_resolver) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/ingest",
            headers={"X-API-Key": merchant.api_key},
            json={"phone": "+5511999990000", "transactionId": "pos-1", "amount": 10},
        )

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["code"] == "no_active_campaign"
    assert detail["retryable"] is False
    assert identity_resolver.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"phone": "+5511999990000", "transactionId": "pos-1", "amount": 0},
        {"phone": "+5511999990000", "transactionId": "pos-1", "amount": -5},
        {"phone": "   ", "transactionId": "pos-1", "amount": 10},
        {"phone": "+5511999990000", "amount": 10},
    ],
)
async def test_ingest_rejects_malformed_payloads(app_with_db, merchant, body) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post("/api/v1/ingest", headers={"X-API-Key": merchant.api_key}, json=body)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_identity_outage_maps_to_bad_gateway(app_with_db, merchant, identity_resolver) -> None:
    app, session_factory = app_with_db
    identity_resolver.error = IdentityResolverError("identity provider returned status 503")
    await create_campaign(session_factory, merchant.id, CampaignType.CASHBACK, {"percentage": 10})

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/ingest",
            headers={"X-API-Key": merchant.api_key},
            json={"phone": "+5511999990000", "transactionId": "pos-1", "amount": 10},
        )

    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "identity_resolver_unavailable"
