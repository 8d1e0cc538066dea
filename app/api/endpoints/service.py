# app/api/endpoints/service.py
import logging
from fastapi import APIRouter, Request

from app.api.models.shard import ServiceDataResponse
from app.services.catalog import AGENT_DATABASE
from app.x402.middleware import get_gate_context

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/data", response_model=ServiceDataResponse, response_model_exclude_none=True)
async def get_service_data(request: Request) -> ServiceDataResponse:
    """
    Paid access to the Sentience agent database.

    Only reached after the payment gate settled; the receipt is echoed in
    the body and in the X-Payment-Response header.
    """
    context = get_gate_context(request)
    payment = context.payment_info() if context else None
    logger.info(f"Agent database served (tx: {payment['txHash'] if payment else 'none'})")
    return ServiceDataResponse(data=AGENT_DATABASE, payment=payment)
