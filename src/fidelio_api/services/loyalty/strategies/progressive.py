"""Progressive tiers: points per unit spent, multiplied by the tier reached by transaction count."""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from pydantic import Field

from fidelio_api.models.loyalty import CampaignType
from fidelio_api.services.loyalty.errors import ConfigError
from fidelio_api.services.loyalty.strategies.base import (
    RewardInfo,
    RewardStrategy,
    StrategyInput,
    StrategyModel,
    StrategyResult,
    quantize_amount,
)


class ProgressiveTier(StrategyModel):
    name: str = ""
    min_transactions: int = 0
    reward_multiplier: Decimal = Decimal("1")
    bonus_points: Decimal = Decimal("0")


class ProgressiveConfig(StrategyModel):
    tiers: list[ProgressiveTier] = Field(default_factory=list)
    base_points_ratio: Decimal = Decimal("0")


class ProgressiveState(StrategyModel):
    transaction_count: int = 0
    current_tier: int = 0
    total_points: float = 0.0


def calculate_tier(tiers: Sequence[ProgressiveTier], transaction_count: int) -> int:
    """Index of the highest tier whose threshold is <= ``transaction_count``.

    Falls back to the first tier when no threshold has been reached yet.
    """

    tier_index = 0
    for index, tier in enumerate(tiers):
        if transaction_count >= tier.min_transactions:
            tier_index = index
    return tier_index


class ProgressiveStrategy(RewardStrategy[ProgressiveConfig, ProgressiveState]):
    campaign_type = CampaignType.PROGRESSIVE
    config_model = ProgressiveConfig
    state_model = ProgressiveState

    def _check_config(self, config: ProgressiveConfig) -> None:
        if not config.tiers:
            raise ConfigError("at least one tier is required")
        if config.base_points_ratio <= 0:
            raise ConfigError("base_points_ratio must be greater than 0")
        for previous, current in zip(config.tiers, config.tiers[1:]):
            if current.min_transactions <= previous.min_transactions:
                raise ConfigError("tiers must be sorted by min_transactions in ascending order")

    def _apply(self, config: ProgressiveConfig, strategy_input: StrategyInput) -> StrategyResult:
        state = self.load_state(strategy_input.current_state)
        state.transaction_count += 1

        previous_tier = state.current_tier
        state.current_tier = calculate_tier(config.tiers, state.transaction_count)
        tier = config.tiers[state.current_tier]

        bonus = tier.bonus_points if state.current_tier > previous_tier else Decimal("0")
        points = quantize_amount(
            strategy_input.amount * config.base_points_ratio * tier.reward_multiplier + bonus
        )
        state.total_points = float(Decimal(str(state.total_points)) + points)

        tier_name = tier.name or f"Tier {state.current_tier + 1}"
        description = f"Earned {points:.0f} points at tier {tier_name}"
        if bonus > 0:
            description += f" (bonus of {bonus:.0f} points for reaching a new tier!)"

        return StrategyResult(
            balance_delta=points,
            new_state=state.as_state(),
            reward=RewardInfo(type="points", amount=points, description=description),
            state_changed=True,
        )


__all__ = [
    "ProgressiveConfig",
    "ProgressiveState",
    "ProgressiveStrategy",
    "ProgressiveTier",
    "calculate_tier",
]
