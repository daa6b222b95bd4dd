"""
Payment endpoints.

Thin transport layer: each handler resolves the caller, calls the lifecycle
service and wraps the result in the success envelope. Domain errors raised by
the service are turned into status codes by the handler in paygate.main.
"""
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from paygate_common.utils import SuccessResponse

from paygate.dependencies import get_caller_id, get_payment_service
from paygate.errors import MalformedPayloadError
from paygate.models import TransactionDB
from paygate.schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    CreateQrisPaymentRequest,
    CreateQrisPaymentResponse,
    TransactionResponse,
)
from paygate.service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def to_response(transaction: TransactionDB) -> TransactionResponse:
    return TransactionResponse(**transaction.model_dump())


@router.post("/create", response_model=SuccessResponse[CreatePaymentResponse])
async def create_payment(
    payment_request: CreatePaymentRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PaymentService = Depends(get_payment_service),
):
    transaction = await service.create_payment(caller_id, payment_request.items, payment_request.customer_details)
    return SuccessResponse(
        data=CreatePaymentResponse(
            order_id=transaction.order_id,
            token=transaction.gateway_reference,
            redirect_url=transaction.redirect_url or "",
        ),
        message="Payment created",
    )


@router.post("/qris", response_model=SuccessResponse[CreateQrisPaymentResponse])
async def create_qris_payment(
    payment_request: CreateQrisPaymentRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PaymentService = Depends(get_payment_service),
):
    transaction = await service.create_qris_payment(caller_id, payment_request.items, payment_request.customer_details)
    return SuccessResponse(
        data=CreateQrisPaymentResponse(
            order_id=transaction.order_id,
            qr_string=transaction.gateway_reference,
            qr_url=transaction.qr_url,
        ),
        message="QRIS payment created",
    )


@router.get("/status/{order_id}", response_model=SuccessResponse[TransactionResponse])
async def get_status(
    order_id: str,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PaymentService = Depends(get_payment_service),
):
    transaction = await service.get_status(caller_id, order_id)
    return SuccessResponse(data=to_response(transaction))


@router.get("/history", response_model=SuccessResponse[List[TransactionResponse]])
async def get_history(
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PaymentService = Depends(get_payment_service),
):
    transactions = await service.get_history(caller_id)
    return SuccessResponse(data=[to_response(t) for t in transactions])


@router.post("/notification", response_model=SuccessResponse[dict])
async def handle_notification(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayloadError("Notification body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Notification body must be a JSON object")

    transaction = await service.handle_notification(payload)
    return SuccessResponse(
        data={"order_id": transaction.order_id, "status": transaction.status.value},
        message="Notification processed",
    )


@router.post("/{order_id}/cancel", response_model=SuccessResponse[TransactionResponse])
async def cancel_payment(
    order_id: str,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PaymentService = Depends(get_payment_service),
):
    transaction = await service.cancel_payment(caller_id, order_id)
    return SuccessResponse(data=to_response(transaction), message="Payment cancelled")
