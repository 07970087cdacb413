"""Shared contract for reward strategies.

A strategy turns ``(campaign config, prior state, purchase amount)`` into a balance
delta, a new state blob and an optional reward. Strategies never touch storage;
the ingestion engine persists whatever they return.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar, Generic, Mapping, Protocol, TypeVar
from uuid import UUID

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from fidelio_api.models.loyalty import CampaignType
from fidelio_api.services.loyalty.errors import ConfigError, StrategyExecutionError

_CENT = Decimal("0.01")


def quantize_amount(value: Decimal) -> Decimal:
    """Round a balance delta to the precision stored by the ledger."""

    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


class StrategyModel(BaseModel):
    """Config/state schema accepting both ``snake_case`` and ``camelCase`` keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def as_state(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CampaignLike(Protocol):
    id: UUID
    type: CampaignType
    config: Mapping[str, Any] | None


@dataclass(frozen=True, slots=True)
class RewardInfo:
    type: str
    amount: Decimal
    description: str

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "amount": str(self.amount), "description": self.description}


@dataclass(frozen=True, slots=True)
class StrategyInput:
    campaign: CampaignLike
    transaction_id: str
    amount: Decimal
    current_state: Mapping[str, Any] | None = None
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class StrategyResult:
    balance_delta: Decimal
    new_state: dict[str, Any]
    reward: RewardInfo | None
    state_changed: bool


ConfigT = TypeVar("ConfigT", bound=StrategyModel)
StateT = TypeVar("StateT", bound=StrategyModel)


class RewardStrategy(ABC, Generic[ConfigT, StateT]):
    """Base class for the punch-card, cashback and progressive strategies."""

    campaign_type: ClassVar[CampaignType]
    config_model: ClassVar[type[StrategyModel]]
    state_model: ClassVar[type[StrategyModel]]

    def get_type(self) -> CampaignType:
        return self.campaign_type

    def validate(self, config: Mapping[str, Any] | None) -> ConfigT:
        """Parse ``config`` and reject semantically invalid values."""

        if not isinstance(config, Mapping):
            raise ConfigError(f"{self.campaign_type.value} config must be an object")
        try:
            parsed = self.config_model.model_validate(dict(config))
        except ValidationError as exc:
            raise ConfigError(f"invalid {self.campaign_type.value} config: {exc.errors()[0]['msg']}") from exc
        self._check_config(parsed)  # type: ignore[arg-type]
        return parsed  # type: ignore[return-value]

    def execute(self, strategy_input: StrategyInput) -> StrategyResult:
        """Apply one purchase to the prior state. Deterministic and free of I/O."""

        try:
            config = self.validate(strategy_input.campaign.config)
        except ConfigError as exc:
            raise StrategyExecutionError(
                f"campaign {strategy_input.campaign.id} cannot run: {exc}"
            ) from exc
        return self._apply(config, strategy_input)

    def load_state(self, blob: Mapping[str, Any] | None) -> StateT:
        """Parse a stored state blob, falling back to a zero state when unreadable."""

        if not blob:
            return self.state_model()  # type: ignore[return-value]
        if not isinstance(blob, Mapping):
            logger.warning("Resetting non-object strategy state", campaign_type=self.campaign_type.value)
            return self.state_model()  # type: ignore[return-value]
        try:
            return self.state_model.model_validate(dict(blob))  # type: ignore[return-value]
        except ValidationError:
            logger.warning("Resetting unreadable strategy state", campaign_type=self.campaign_type.value)
            return self.state_model()  # type: ignore[return-value]

    @staticmethod
    def unchanged(strategy_input: StrategyInput) -> StrategyResult:
        return StrategyResult(
            balance_delta=Decimal("0"),
            new_state=dict(strategy_input.current_state or {}),
            reward=None,
            state_changed=False,
        )

    @abstractmethod
    def _check_config(self, config: ConfigT) -> None:
        """Raise ``ConfigError`` when the parsed config is not runnable."""

    @abstractmethod
    def _apply(self, config: ConfigT, strategy_input: StrategyInput) -> StrategyResult:
        """Compute the result for a validated config."""


__all__ = [
    "CampaignLike",
    "RewardInfo",
    "RewardStrategy",
    "StrategyInput",
    "StrategyModel",
    "StrategyResult",
    "quantize_amount",
]
