"""Immutable campaign-type -> strategy lookup built once at process start."""

from __future__ import annotations

from functools import lru_cache
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from fidelio_api.models.loyalty import CampaignType
from fidelio_api.services.loyalty.errors import UnknownStrategyError
from fidelio_api.services.loyalty.strategies.base import RewardStrategy, StrategyModel
from fidelio_api.services.loyalty.strategies.cashback import CashbackStrategy
from fidelio_api.services.loyalty.strategies.progressive import ProgressiveStrategy
from fidelio_api.services.loyalty.strategies.punch_card import PunchCardStrategy


class StrategyRegistry:
    """Read-only mapping from campaign type to its reward strategy."""

    def __init__(self, strategies: Iterable[RewardStrategy]) -> None:
        entries: dict[CampaignType, RewardStrategy] = {}
        for strategy in strategies:
            campaign_type = strategy.get_type()
            if campaign_type in entries:
                raise ValueError(f"Duplicate strategy registered for {campaign_type.value}")
            entries[campaign_type] = strategy
        self._strategies: Mapping[CampaignType, RewardStrategy] = MappingProxyType(entries)

    def __contains__(self, campaign_type: object) -> bool:
        try:
            return _coerce_type(campaign_type) in self._strategies  # type: ignore[arg-type]
        except UnknownStrategyError:
            return False

    def __iter__(self) -> Iterator[CampaignType]:
        return iter(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)

    def resolve(self, campaign_type: CampaignType | str) -> RewardStrategy:
        resolved = _coerce_type(campaign_type)
        strategy = self._strategies.get(resolved)
        if strategy is None:
            raise UnknownStrategyError(f"no strategy found for campaign type: {resolved.value}")
        return strategy

    def validate(self, campaign_type: CampaignType | str, config: Mapping[str, Any] | None) -> StrategyModel:
        """Validate a campaign config against the strategy bound to its type."""

        return self.resolve(campaign_type).validate(config)


def _coerce_type(value: object) -> CampaignType:
    if isinstance(value, CampaignType):
        return value
    try:
        return CampaignType(str(value))
    except ValueError as exc:
        raise UnknownStrategyError(f"no strategy found for campaign type: {value}") from exc


@lru_cache
def build_default_registry() -> StrategyRegistry:
    return StrategyRegistry(
        [
            PunchCardStrategy(),
            CashbackStrategy(),
            ProgressiveStrategy(),
        ]
    )


__all__ = ["StrategyRegistry", "build_default_registry"]
