# backend/courtside/routes/v1/webhooks.py
"""
Gateway webhook routes - API v1

Endpoints:
    POST /payments - PayOS payment notifications
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from ...api.dependencies import get_payment_reconciler
from ...core.exceptions import (
    GatewayException,
    SignatureInvalidException,
    ValidationException,
    handle_domain_exception,
)
from ...schemas.payment import WebhookAckResponse
from ...services.payment_reconciler import PaymentReconciler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks-v1"])

SIGNATURE_HEADER = "x-payos-signature"


@router.post("/payments", response_model=WebhookAckResponse)
async def payos_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> WebhookAckResponse:
    """
    Receive a PayOS payment notification.

    The signature is checked against the exact bytes received. Once it
    verifies, the delivery is always acknowledged with 200 so PayOS stops
    retrying; processing errors are logged and answered with ``status=error``.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = await asyncio.to_thread(reconciler.handle_webhook, raw_body, signature)
    except (SignatureInvalidException, ValidationException, GatewayException) as e:
        handle_domain_exception(e)
    except Exception:
        logger.exception("PayOS webhook processing failed after signature verification")
        return WebhookAckResponse(status="error")
    return WebhookAckResponse(status="ok", outcome=result.outcome)
