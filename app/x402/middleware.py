# app/x402/middleware.py
"""
FastAPI middleware that enforces the gate chain on registered routes.

This module provides HTTP middleware that:
1. Looks the request up in the route registry (unregistered routes pass through)
2. Runs the route's gates in order (payment, trust, spell, ownership, ...)
3. Turns the first gate rejection into its 400/402/403/502 JSON response
4. Exposes the GateContext to the endpoint via request.state.gate_context
5. Adds X-Payment-Response / Payment-Response receipt headers once a payment settled
"""
import json
import logging
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.x402.audit import generate_request_id
from app.x402.errors import GateRejection
from app.x402.gates import GateChain, GateContext, GateDependencies
from app.x402.registry import RouteRegistry

logger = logging.getLogger(__name__)

X_PAYMENT_RESPONSE_HEADER = "X-Payment-Response"
PAYMENT_RESPONSE_HEADER = "Payment-Response"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


def encode_payment_response(tx_hash: str) -> str:
    """Encode the settlement receipt for the X-Payment-Response header."""
    return json.dumps({"txHash": tx_hash})


class X402GateMiddleware(BaseHTTPMiddleware):
    """
    Gate enforcement middleware for FastAPI.

    Gate chains are built once per registered route when the middleware is
    created. Every request gets its own GateContext; nothing else is shared
    between requests.
    """

    def __init__(self, app, registry: RouteRegistry, deps: GateDependencies):
        super().__init__(app)
        self.registry = registry
        self.deps = deps
        self.chains: Dict[str, GateChain] = {
            entry.key: GateChain.for_route(entry, deps) for entry in registry
        }

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        """
        Process the request through the route's gate chain.

        Flow:
        1. Skip routes not in the registry
        2. Run the gate chain, returning the first rejection as JSON
        3. Call the endpoint
        4. Add payment receipt headers when a settlement succeeded
        """
        entry = self.registry.lookup(request.method, request.url.path)
        if entry is None:
            return await call_next(request)

        context = GateContext(
            request_id=generate_request_id(),
            client_ip=get_client_ip(request),
        )
        request.state.gate_context = context
        logger.info(
            f"x402: Processing gated request [{context.request_id}] from {context.client_ip}: "
            f"{request.method} {request.url.path}"
        )

        chain = self.chains[entry.key]
        try:
            await chain.run(request, context)
        except GateRejection as rejection:
            logger.info(
                f"x402: Request [{context.request_id}] rejected with {rejection.status_code}: {rejection.error}"
            )
            self.deps.audit.log_gate_rejected(
                client_ip=context.client_ip,
                path=request.url.path,
                error=rejection.error,
                status_code=rejection.status_code,
                wallet_address=context.payer_identity,
                request_id=context.request_id,
            )
            return rejection.to_response()

        self.deps.audit.log_access_granted(
            client_ip=context.client_ip,
            path=request.url.path,
            tx_hash=context.tx_hash,
            wallet_address=context.payer_identity,
            request_id=context.request_id,
        )

        response = await call_next(request)

        if context.tx_hash is not None:
            receipt = encode_payment_response(context.tx_hash)
            response.headers[X_PAYMENT_RESPONSE_HEADER] = receipt
            response.headers[PAYMENT_RESPONSE_HEADER] = receipt

        return response


def get_gate_context(request: Request) -> Optional[GateContext]:
    """Return the GateContext attached by X402GateMiddleware, if any."""
    return getattr(request.state, "gate_context", None)
