"""Punch card: every ``required_punches`` qualifying purchases unlock a fixed reward."""

from __future__ import annotations

from decimal import Decimal

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

PUNCH_CARD_REWARD_TYPES = frozenset({"points", "discount", "free_item"})


class PunchCardConfig(StrategyModel):
    required_punches: int = 0
    reward_amount: Decimal = Decimal("0")
    reward_type: str = ""
    min_purchase: Decimal | None = None


class PunchCardState(StrategyModel):
    current_punches: int = 0
    total_redeemed: int = 0


class PunchCardStrategy(RewardStrategy[PunchCardConfig, PunchCardState]):
    campaign_type = CampaignType.PUNCH_CARD
    config_model = PunchCardConfig
    state_model = PunchCardState

    def _check_config(self, config: PunchCardConfig) -> None:
        if config.required_punches <= 0:
            raise ConfigError("required_punches must be greater than 0")
        if config.reward_amount <= 0:
            raise ConfigError("reward_amount must be greater than 0")
        if config.reward_type not in PUNCH_CARD_REWARD_TYPES:
            raise ConfigError(f"invalid reward_type: {config.reward_type}")

    def _apply(self, config: PunchCardConfig, strategy_input: StrategyInput) -> StrategyResult:
        if config.min_purchase and strategy_input.amount < config.min_purchase:
            return self.unchanged(strategy_input)

        state = self.load_state(strategy_input.current_state)
        state.current_punches += 1

        delta = Decimal("0")
        reward: RewardInfo | None = None
        if state.current_punches >= config.required_punches:
            delta = quantize_amount(config.reward_amount)
            state.current_punches = 0
            state.total_redeemed += 1
            reward = RewardInfo(
                type=config.reward_type,
                amount=delta,
                description=f"Completed {config.required_punches} purchases! Reward unlocked.",
            )

        return StrategyResult(
            balance_delta=delta,
            new_state=state.as_state(),
            reward=reward,
            state_changed=True,
        )


__all__ = ["PUNCH_CARD_REWARD_TYPES", "PunchCardConfig", "PunchCardState", "PunchCardStrategy"]
