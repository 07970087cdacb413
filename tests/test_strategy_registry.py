import pytest

from fidelio_api.models.loyalty import CampaignType
from fidelio_api.services.loyalty.errors import ConfigError, UnknownStrategyError
from fidelio_api.services.loyalty.strategies import (
    CashbackConfig,
    CashbackStrategy,
    PunchCardStrategy,
    StrategyRegistry,
    build_default_registry,
)


def test_default_registry_covers_every_campaign_type() -> None:
    registry = build_default_registry()

    assert len(registry) == len(CampaignType)
    for campaign_type in CampaignType:
        assert registry.resolve(campaign_type).get_type() is campaign_type
    assert build_default_registry() is registry


def test_resolve_accepts_string_tags() -> None:
    registry = build_default_registry()

    assert isinstance(registry.resolve("CASHBACK"), CashbackStrategy)
    assert "PUNCH_CARD" in registry
    assert "LOTTERY" not in registry


def test_resolve_missing_strategy_raises() -> None:
    registry = StrategyRegistry([PunchCardStrategy()])

    with pytest.raises(UnknownStrategyError):
        registry.resolve(CampaignType.CASHBACK)
    with pytest.raises(UnknownStrategyError):
        registry.resolve("LOTTERY")


def test_duplicate_registration_is_rejected() -> None:
    with pytest.raises(ValueError):
        StrategyRegistry([CashbackStrategy(), CashbackStrategy()])


def test_registry_validate_parses_config() -> None:
    registry = build_default_registry()

    parsed = registry.validate(CampaignType.CASHBACK, {"percentage": 7.5, "max_cashback": 15})

    assert isinstance(parsed, CashbackConfig)
    assert str(parsed.percentage) == "7.5"

    with pytest.raises(ConfigError):
        registry.validate(CampaignType.CASHBACK, None)
