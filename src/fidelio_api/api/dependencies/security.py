from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fidelio_api.db.session import get_session_factory
from fidelio_api.models.merchant import Merchant


async def require_merchant(
    x_api_key: str = Header("", alias="X-API-Key"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Merchant:
    """Resolve the calling merchant from its API key."""

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    async with session_factory() as session:
        result = await session.execute(select(Merchant).where(Merchant.api_key == x_api_key))
        merchant = result.scalar_one_or_none()

    if merchant is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return merchant
