# backend/courtside/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    GET /return - Browser return from checkout; re-verifies, then redirects
    GET /cancel - Browser cancel from checkout; re-verifies, then redirects
    POST /verify - Client poll after redirect-back
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import RedirectResponse

from ...api.dependencies import get_payment_reconciler
from ...core.exceptions import DomainException, handle_domain_exception
from ...schemas.payment import PaymentVerifyRequest, PaymentVerifyResponse
from ...services.payment_reconciler import PaymentReconciler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


async def _redirect(reconciler: PaymentReconciler, order_code: Optional[int], kind: str) -> RedirectResponse:
    try:
        url = await asyncio.to_thread(reconciler.handle_redirect, order_code, kind)
    except DomainException as e:
        handle_domain_exception(e)
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/return", response_class=RedirectResponse, status_code=status.HTTP_303_SEE_OTHER)
async def payment_return(
    order_code: Optional[int] = Query(None, alias="orderCode"),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> RedirectResponse:
    """
    Gateway return URL.

    Query parameters other than ``orderCode`` are ignored; the result page
    is chosen from a live gateway lookup.
    """
    return await _redirect(reconciler, order_code, "return")


@router.get("/cancel", response_class=RedirectResponse, status_code=status.HTTP_303_SEE_OTHER)
async def payment_cancel(
    order_code: Optional[int] = Query(None, alias="orderCode"),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> RedirectResponse:
    return await _redirect(reconciler, order_code, "cancel")


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    verify_data: PaymentVerifyRequest = Body(...),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentVerifyResponse:
    """Re-query the gateway; ``unknown`` means try again shortly."""
    try:
        result = await asyncio.to_thread(
            reconciler.verify, verify_data.order_code, verify_data.booking_id
        )
        return PaymentVerifyResponse(**result.to_dict())
    except DomainException as e:
        handle_domain_exception(e)
