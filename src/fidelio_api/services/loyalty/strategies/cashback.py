"""Cashback: a percentage of each qualifying purchase, optionally capped per transaction."""

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


class CashbackConfig(StrategyModel):
    percentage: Decimal = Decimal("0")
    max_cashback: Decimal | None = None
    min_purchase: Decimal | None = None


class CashbackState(StrategyModel):
    total_earned: float = 0.0
    total_redeemed: float = 0.0


class CashbackStrategy(RewardStrategy[CashbackConfig, CashbackState]):
    campaign_type = CampaignType.CASHBACK
    config_model = CashbackConfig
    state_model = CashbackState

    def _check_config(self, config: CashbackConfig) -> None:
        if config.percentage <= 0 or config.percentage > 100:
            raise ConfigError("percentage must be between 0 and 100")
        if config.max_cashback is not None and config.max_cashback < 0:
            raise ConfigError("max_cashback cannot be negative")

    def _apply(self, config: CashbackConfig, strategy_input: StrategyInput) -> StrategyResult:
        if config.min_purchase and strategy_input.amount < config.min_purchase:
            return self.unchanged(strategy_input)

        state = self.load_state(strategy_input.current_state)

        cashback = strategy_input.amount * config.percentage / Decimal("100")
        # A zero cap means "uncapped".
        if config.max_cashback and cashback > config.max_cashback:
            cashback = config.max_cashback
        cashback = quantize_amount(cashback)

        state.total_earned = float(Decimal(str(state.total_earned)) + cashback)

        reward = RewardInfo(
            type="cashback",
            amount=cashback,
            description=f"{config.percentage:.1f}% cashback on {strategy_input.amount:.2f}",
        )
        return StrategyResult(
            balance_delta=cashback,
            new_state=state.as_state(),
            reward=reward,
            state_changed=True,
        )


__all__ = ["CashbackConfig", "CashbackState", "CashbackStrategy"]
