from __future__ import annotations

from fastapi import APIRouter, Depends

from fidelio_api.api.dependencies.loyalty import get_conversion_service
from fidelio_api.api.dependencies.security import require_merchant
from fidelio_api.api.errors import http_error
from fidelio_api.models.merchant import Merchant
from fidelio_api.schemas.ingest import (
    ConversionStatsResponse,
    ExpirationMetricsResponse,
    MerchantStatsResponse,
)
from fidelio_api.services.loyalty import ConversionService, LoyaltyEngineError

router = APIRouter(tags=["Stats"])


@router.get("/stats", response_model=MerchantStatsResponse, summary="Shadow conversion and breakage statistics")
async def merchant_stats(
    merchant: Merchant = Depends(require_merchant),
    conversion: ConversionService = Depends(get_conversion_service),
) -> MerchantStatsResponse:
    try:
        stats = await conversion.get_conversion_stats(merchant.id)
        metrics = await conversion.get_expiration_metrics()
    except LoyaltyEngineError as exc:
        raise http_error(exc) from exc

    return MerchantStatsResponse(
        conversion=ConversionStatsResponse(**stats.as_dict()),
        expiration=ExpirationMetricsResponse(
            total_expired=metrics.total_expired,
            total_breakage=float(metrics.total_breakage),
            average_breakage=float(metrics.average_breakage),
        ),
    )
