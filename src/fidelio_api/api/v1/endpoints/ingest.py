"""Purchase event ingestion for merchant point-of-sale integrations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from loguru import logger

from fidelio_api.api.dependencies.loyalty import get_ingestion_engine
from fidelio_api.api.dependencies.security import require_merchant
from fidelio_api.api.errors import http_error
from fidelio_api.models.merchant import Merchant
from fidelio_api.schemas.ingest import IngestRequest, IngestResponse
from fidelio_api.services.loyalty import IngestionEngine, LoyaltyEngineError

router = APIRouter(tags=["Ingestion"])


@router.post(
    "/ingest",
    response_model=IngestResponse,
    status_code=status.HTTP_200_OK,
    summary="Apply a purchase to the merchant's active campaign",
)
async def ingest_transaction(
    payload: IngestRequest,
    merchant: Merchant = Depends(require_merchant),
    engine: IngestionEngine = Depends(get_ingestion_engine),
) -> IngestResponse:
    try:
        return await engine.process_transaction(merchant.id, payload)
    except LoyaltyEngineError as exc:
        logger.warning(
            "Transaction ingestion failed",
            merchant_id=str(merchant.id),
            transaction_id=payload.transaction_id,
            code=exc.code,
            error=str(exc),
        )
        raise http_error(exc) from exc
