"""Reward strategy exports."""

from .base import (  # noqa: F401
    RewardInfo,
    RewardStrategy,
    StrategyInput,
    StrategyResult,
    quantize_amount,
)
from .cashback import CashbackConfig, CashbackState, CashbackStrategy  # noqa: F401
from .progressive import (  # noqa: F401
    ProgressiveConfig,
    ProgressiveState,
    ProgressiveStrategy,
    ProgressiveTier,
    calculate_tier,
)
from .punch_card import PunchCardConfig, PunchCardState, PunchCardStrategy  # noqa: F401
from .registry import StrategyRegistry, build_default_registry  # noqa: F401
