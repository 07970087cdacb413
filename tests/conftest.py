import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from fidelio_api.api.dependencies.loyalty import get_identity_resolver  # noqa: E402
from fidelio_api.app import create_app  # noqa: E402
from fidelio_api.db.base import Base  # noqa: E402
from fidelio_api.db.session import get_session, get_session_factory  # noqa: E402
from fidelio_api.models.loyalty import Campaign, CampaignType  # noqa: E402
from fidelio_api.models.merchant import Merchant  # noqa: E402
from fidelio_api.observability.shadow_ledger import get_shadow_ledger_store  # noqa: E402


class StubIdentityResolver:
    """In-memory identity resolver keyed by raw phone number."""

    def __init__(self, registered: dict[str, UUID] | None = None, *, error: Exception | None = None) -> None:
        self.registered = dict(registered or {})
        self.error = error
        self.calls: list[str] = []

    async def user_exists_by_phone(self, phone: str) -> tuple[UUID | None, bool]:
        self.calls.append(phone)
        if self.error is not None:
            raise self.error
        customer_id = self.registered.get(phone)
        return customer_id, customer_id is not None


@pytest.fixture(autouse=True)
def reset_shadow_ledger_store():
    store = get_shadow_ledger_store()
    store.reset()
    yield
    store.reset()


@pytest.fixture
def identity_resolver() -> StubIdentityResolver:
    return StubIdentityResolver()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def merchant(session_factory) -> Merchant:
    async with session_factory() as session:
        record = Merchant(name="Corner Bakery", api_key=f"key-{uuid4().hex}", settings_json={})
        session.add(record)
        await session.commit()
    return record


async def create_campaign(
    session_factory,
    merchant_id: UUID,
    campaign_type: CampaignType,
    config: dict,
    *,
    created_at: datetime | None = None,
    **fields,
) -> Campaign:
    async with session_factory() as session:
        campaign = Campaign(
            merchant_id=merchant_id,
            name=fields.pop("name", f"{campaign_type.value.title()} campaign"),
            type=campaign_type,
            config=config,
            created_at=created_at or datetime.now(timezone.utc) - timedelta(minutes=1),
            **fields,
        )
        session.add(campaign)
        await session.commit()
    return campaign


@pytest_asyncio.fixture
async def app_with_db(session_factory, identity_resolver):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_identity_resolver] = lambda: identity_resolver

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
