from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from fidelio_api.models.loyalty import CampaignType
from fidelio_api.services.loyalty.errors import ConfigError, StrategyExecutionError
from fidelio_api.services.loyalty.strategies import (
    CashbackStrategy,
    ProgressiveStrategy,
    ProgressiveTier,
    PunchCardStrategy,
    StrategyInput,
    calculate_tier,
)


@dataclass
class FakeCampaign:
    type: CampaignType
    config: dict
    id: UUID = field(default_factory=uuid4)


def _run(strategy, campaign, amount, state=None):
    return strategy.execute(
        StrategyInput(
            campaign=campaign,
            transaction_id=f"tx-{uuid4().hex[:8]}",
            amount=Decimal(str(amount)),
            current_state=state,
        )
    )


def test_punch_card_rewards_on_third_purchase_and_resets() -> None:
    strategy = PunchCardStrategy()
    campaign = FakeCampaign(
        CampaignType.PUNCH_CARD,
        {"requiredPunches": 3, "rewardAmount": 10, "rewardType": "points"},
    )

    state = None
    deltas = []
    for _ in range(3):
        result = _run(strategy, campaign, 12, state)
        state = result.new_state
        deltas.append(result.balance_delta)

    assert deltas[:2] == [Decimal("0"), Decimal("0")]
    assert deltas[2] == Decimal("10")
    assert state["current_punches"] == 0
    assert state["total_redeemed"] == 1


def test_punch_card_reward_fires_exactly_once_per_cycle() -> None:
    strategy = PunchCardStrategy()
    campaign = FakeCampaign(
        CampaignType.PUNCH_CARD,
        {"required_punches": 4, "reward_amount": 25, "reward_type": "discount"},
    )

    state = None
    rewards = []
    for _ in range(8):
        result = _run(strategy, campaign, 5, state)
        state = result.new_state
        if result.reward is not None:
            rewards.append(result.reward)

    assert len(rewards) == 2
    assert all(reward.type == "discount" and reward.amount == Decimal("25") for reward in rewards)
    assert state == {"current_punches": 0, "total_redeemed": 2}


def test_punch_card_below_min_purchase_leaves_state_untouched() -> None:
    strategy = PunchCardStrategy()
    campaign = FakeCampaign(
        CampaignType.PUNCH_CARD,
        {"requiredPunches": 2, "rewardAmount": 5, "rewardType": "free_item", "minPurchase": 20},
    )
    prior = {"current_punches": 1, "total_redeemed": 0}

    result = _run(strategy, campaign, "19.99", prior)

    assert result.balance_delta == Decimal("0")
    assert result.state_changed is False
    assert result.reward is None
    assert result.new_state == prior


@pytest.mark.parametrize(
    "config",
    [
        {"requiredPunches": 0, "rewardAmount": 10, "rewardType": "points"},
        {"requiredPunches": 3, "rewardAmount": 0, "rewardType": "points"},
        {"requiredPunches": 3, "rewardAmount": 10, "rewardType": "voucher"},
    ],
)
def test_punch_card_validation_rejects_bad_config(config) -> None:
    with pytest.raises(ConfigError):
        PunchCardStrategy().validate(config)


def test_cashback_is_capped_at_max_cashback() -> None:
    strategy = CashbackStrategy()
    campaign = FakeCampaign(CampaignType.CASHBACK, {"percentage": 5, "maxCashback": 20})

    result = _run(strategy, campaign, 1000)

    assert result.balance_delta == Decimal("20.00")
    assert result.reward is not None
    assert result.reward.type == "cashback"
    assert result.new_state["total_earned"] == pytest.approx(20.0)


def test_cashback_uncapped_is_percentage_of_amount() -> None:
    strategy = CashbackStrategy()
    campaign = FakeCampaign(CampaignType.CASHBACK, {"percentage": "2.5"})

    first = _run(strategy, campaign, 80)
    second = _run(strategy, campaign, 40, first.new_state)

    assert first.balance_delta == Decimal("2.00")
    assert second.balance_delta == Decimal("1.00")
    assert second.new_state["total_earned"] == pytest.approx(3.0)


def test_cashback_below_min_purchase_yields_zero() -> None:
    strategy = CashbackStrategy()
    campaign = FakeCampaign(CampaignType.CASHBACK, {"percentage": 10, "minPurchase": 50})

    result = _run(strategy, campaign, 49)

    assert result.balance_delta == Decimal("0")
    assert result.state_changed is False


@pytest.mark.parametrize(
    "config",
    [
        {"percentage": 0},
        {"percentage": 101},
        {"percentage": 5, "maxCashback": -1},
        ["not", "an", "object"],
    ],
)
def test_cashback_validation_rejects_bad_config(config) -> None:
    with pytest.raises(ConfigError):
        CashbackStrategy().validate(config)


PROGRESSIVE_CONFIG = {
    "basePointsRatio": 1,
    "tiers": [
        {"name": "Bronze", "minTransactions": 0, "rewardMultiplier": 1, "bonusPoints": 0},
        {"name": "Silver", "minTransactions": 3, "rewardMultiplier": 2, "bonusPoints": 50},
        {"name": "Gold", "minTransactions": 5, "rewardMultiplier": 3, "bonusPoints": 100},
    ],
}


def test_progressive_tier_is_monotonic_and_bonus_only_on_upgrade() -> None:
    strategy = ProgressiveStrategy()
    campaign = FakeCampaign(CampaignType.PROGRESSIVE, PROGRESSIVE_CONFIG)

    state = None
    tiers = []
    deltas = []
    for _ in range(7):
        result = _run(strategy, campaign, 10, state)
        state = result.new_state
        tiers.append(state["current_tier"])
        deltas.append(result.balance_delta)

    assert tiers == sorted(tiers)
    assert tiers == [0, 0, 1, 1, 2, 2, 2]
    # 10 points at Bronze, 20 + 50 bonus on reaching Silver, 30 + 100 on reaching Gold.
    assert deltas == [
        Decimal("10.00"),
        Decimal("10.00"),
        Decimal("70.00"),
        Decimal("20.00"),
        Decimal("130.00"),
        Decimal("30.00"),
        Decimal("30.00"),
    ]
    assert state["transaction_count"] == 7
    assert state["total_points"] == pytest.approx(300.0)


def test_progressive_reward_description_mentions_tier_and_bonus() -> None:
    strategy = ProgressiveStrategy()
    campaign = FakeCampaign(CampaignType.PROGRESSIVE, PROGRESSIVE_CONFIG)

    result = _run(strategy, campaign, 10, {"transaction_count": 2, "current_tier": 0, "total_points": 20})

    assert "Silver" in result.reward.description
    assert "bonus" in result.reward.description


def test_calculate_tier_uses_inclusive_thresholds() -> None:
    tiers = [
        ProgressiveTier(name="a", min_transactions=0),
        ProgressiveTier(name="b", min_transactions=2),
        ProgressiveTier(name="c", min_transactions=4),
    ]

    assert calculate_tier(tiers, 1) == 0
    assert calculate_tier(tiers, 2) == 1
    assert calculate_tier(tiers, 4) == 2
    assert calculate_tier(tiers, 40) == 2


@pytest.mark.parametrize(
    "config",
    [
        {"basePointsRatio": 1, "tiers": []},
        {"basePointsRatio": 0, "tiers": [{"minTransactions": 0}]},
        {"basePointsRatio": 1, "tiers": [{"minTransactions": 3}, {"minTransactions": 3}]},
    ],
)
def test_progressive_validation_rejects_bad_config(config) -> None:
    with pytest.raises(ConfigError):
        ProgressiveStrategy().validate(config)


def test_unreadable_state_is_reinitialized() -> None:
    strategy = PunchCardStrategy()
    campaign = FakeCampaign(
        CampaignType.PUNCH_CARD,
        {"requiredPunches": 3, "rewardAmount": 10, "rewardType": "points"},
    )

    result = _run(strategy, campaign, 10, {"current_punches": "many"})

    assert result.new_state == {"current_punches": 1, "total_redeemed": 0}


def test_execute_with_invalid_campaign_config_raises_execution_error() -> None:
    campaign = FakeCampaign(CampaignType.CASHBACK, {"percentage": 500})

    with pytest.raises(StrategyExecutionError):
        _run(CashbackStrategy(), campaign, 10)
