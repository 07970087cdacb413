"""Identity provider webhooks."""

from __future__ import annotations

import hashlib
import hmac

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from pydantic import ValidationError

from fidelio_api.api.dependencies.loyalty import get_conversion_service
from fidelio_api.api.errors import http_error
from fidelio_api.core.settings import settings
from fidelio_api.schemas.ingest import UserCreatedWebhook
from fidelio_api.services.loyalty import ConversionService, LoyaltyEngineError, hash_phone

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _signature_valid(body: bytes, signature: str | None, secret: str) -> bool:
    if not secret:
        return True
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected)


@router.post("/user-created", status_code=status.HTTP_200_OK)
async def user_created_webhook(
    request: Request,
    conversion: ConversionService = Depends(get_conversion_service),
) -> dict[str, object]:
    """Convert the new user's shadow balances into real wallets."""

    body = await request.body()
    if not _signature_valid(body, request.headers.get("X-Webhook-Signature"), settings.webhook_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = UserCreatedWebhook.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload") from exc

    if payload.type != "INSERT" or payload.table != "users":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unexpected webhook type")

    user_id = payload.record.id
    phone = (payload.record.phone or "").strip()
    if not phone:
        return {"success": True, "message": "user has no phone number", "user_id": str(user_id)}

    try:
        result = await conversion.convert_shadow_to_real_wallet(user_id, hash_phone(phone))
    except LoyaltyEngineError as exc:
        logger.error("Shadow conversion failed", customer_id=str(user_id), code=exc.code, error=str(exc))
        raise http_error(exc) from exc

    return {
        "success": True,
        "message": "shadow wallet converted successfully",
        "user_id": str(user_id),
        "converted_balances": result.converted_balances,
        "converted_amount": float(result.converted_amount),
    }
