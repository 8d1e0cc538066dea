# app/api/endpoints/general.py
import logging
from fastapi import APIRouter, Request

from app.api.models.meta import HealthResponse, MetaResponse, PricedRoute

logger = logging.getLogger(__name__)

router = APIRouter()

CAPABILITIES = ["identity", "reputation", "x402-payments", "easter-eggs"]


@router.get("/health", response_model=HealthResponse, summary="Health Check")
async def health(request: Request) -> HealthResponse:
    """ Unauthenticated liveness probe. """
    return HealthResponse(version=request.app.state.settings.APP_VERSION)


@router.get("/meta", response_model=MetaResponse)
async def meta(request: Request) -> MetaResponse:
    """
    Protocol and network metadata.

    Lists every gated route with its price and gates so a client can budget
    before it receives a 402.
    """
    settings = request.app.state.settings
    registry = request.app.state.registry
    logger.info("Meta endpoint accessed")

    return MetaResponse(
        name=settings.PROJECT_NAME,
        description=settings.PROJECT_DESCRIPTION,
        version=settings.APP_VERSION,
        network=settings.X402_NETWORK_LABEL,
        networkId=settings.X402_NETWORK,
        moduleAddress=settings.MODULE_ADDRESS,
        capabilities=CAPABILITIES,
        paymentAsset=settings.X402_ASSET,
        payee=settings.X402_PAY_TO_ADDRESS,
        routes=[
            PricedRoute(
                path=entry.path,
                price=entry.price,
                description=entry.description,
                gates=[kind.value for kind in entry.gate_kinds],
            )
            for entry in registry
        ],
    )
