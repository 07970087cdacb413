"""Wiring for the ingestion engine and conversion service."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fidelio_api.core.settings import settings
from fidelio_api.db.session import get_session_factory
from fidelio_api.services.loyalty import (
    ConversionService,
    HttpIdentityResolver,
    IdentityResolver,
    IngestionEngine,
    StrategyRegistry,
    UnregisteredIdentityResolver,
    build_default_registry,
)


def get_strategy_registry() -> StrategyRegistry:
    return build_default_registry()


@lru_cache
def get_identity_resolver() -> IdentityResolver:
    if settings.identity_mock:
        logger.info("Identity resolver running in mock mode")
        return UnregisteredIdentityResolver()
    if not settings.identity_provider_url or not settings.identity_service_key:
        logger.warning("Identity provider not configured; every customer resolves as unregistered")
        return UnregisteredIdentityResolver()
    return HttpIdentityResolver(
        settings.identity_provider_url,
        settings.identity_service_key,
        timeout_seconds=settings.identity_timeout_seconds,
    )


def get_ingestion_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    registry: StrategyRegistry = Depends(get_strategy_registry),
    identity_resolver: IdentityResolver = Depends(get_identity_resolver),
) -> IngestionEngine:
    return IngestionEngine(
        session_factory,
        registry=registry,
        identity_resolver=identity_resolver,
        shadow_ttl=settings.shadow_wallet_ttl,
        timeout_seconds=settings.request_timeout_seconds,
    )


def get_conversion_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ConversionService:
    return ConversionService(session_factory, timeout_seconds=settings.request_timeout_seconds)
