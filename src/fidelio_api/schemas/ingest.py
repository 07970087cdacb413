from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: str = Field(..., min_length=1, max_length=32)
    transaction_id: str = Field(..., alias="transactionId", min_length=1, max_length=128)
    amount: Decimal = Field(..., gt=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("phone", "transaction_id")
    @classmethod
    def strip_whitespace(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class RewardPayload(BaseModel):
    type: str
    amount: Decimal
    description: str


class IngestResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    new_balance: Decimal = Field(..., alias="newBalance")
    is_shadow: bool = Field(False, alias="isShadow")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    reward: RewardPayload | None = None


class UserCreatedRecord(BaseModel):
    id: UUID
    phone: str | None = None


class UserCreatedWebhook(BaseModel):
    type: str
    table: str
    record: UserCreatedRecord


class ConversionResponse(BaseModel):
    converted_balances: int = Field(0, alias="convertedBalances")
    converted_amount: Decimal = Field(Decimal("0"), alias="convertedAmount")

    model_config = ConfigDict(populate_by_name=True)


class ConversionStatsResponse(BaseModel):
    total_shadow_balances: int
    converted_balances: int
    expired_balances: int
    active_shadow_balances: int
    total_converted_amount: float
    total_breakage_amount: float
    conversion_rate: float


class ExpirationMetricsResponse(BaseModel):
    total_expired: int
    total_breakage: float
    average_breakage: float


class MerchantStatsResponse(BaseModel):
    conversion: ConversionStatsResponse
    expiration: ExpirationMetricsResponse


__all__ = [
    "ConversionResponse",
    "ConversionStatsResponse",
    "ExpirationMetricsResponse",
    "IngestRequest",
    "IngestResponse",
    "MerchantStatsResponse",
    "RewardPayload",
    "UserCreatedRecord",
    "UserCreatedWebhook",
]
