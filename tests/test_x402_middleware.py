# tests/test_x402_middleware.py
"""
Unit tests for the x402 gate middleware and rejection responses.
"""
import json
from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.services.reputation import DemoOwnershipProvider, DemoReputationProvider
from app.x402.errors import (
    GateRejection,
    MissingIdentity,
    MissingOwnedResource,
    PaymentRequired,
    SpellMismatch,
    TrustTooLow,
    X_PAYMENT_REQUIRED_HEADER,
)
from app.x402.facilitator import FacilitatorClient, SettlementResult, SettlementStatus
from app.x402.gates import GateContext, GateDependencies, GateKind, GateSpec
from app.x402.middleware import (
    X402GateMiddleware,
    encode_payment_response,
    get_client_ip,
    get_gate_context,
    X_PAYMENT_RESPONSE_HEADER,
)
from app.x402.registry import RoutePricingEntry, RouteRegistry
from app.x402.requirements import build_payment_requirement


class TestGetClientIP:
    """Test client IP extraction."""

    def test_forwarded_for_header(self):
        """Extract IP from X-Forwarded-For header."""
        request = MagicMock(spec=Request)
        request.headers = {"X-Forwarded-For": "203.0.113.50, 70.41.3.18"}
        request.client = None

        assert get_client_ip(request) == "203.0.113.50"

    def test_real_ip_header(self):
        """Extract IP from X-Real-IP header."""
        request = MagicMock(spec=Request)
        request.headers = {"X-Real-IP": "203.0.113.50"}
        request.client = None

        assert get_client_ip(request) == "203.0.113.50"

    def test_direct_connection(self):
        """Extract IP from direct connection."""
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = MagicMock()
        request.client.host = "192.168.1.100"

        assert get_client_ip(request) == "192.168.1.100"

    def test_no_client_info(self):
        """Handle missing client info."""
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = None

        assert get_client_ip(request) == "unknown"


class TestRejectionResponses:
    """Test JSON responses produced by gate rejections."""

    def requirement(self):
        return build_payment_requirement("100", "Test", Settings(X402_PAY_TO_ADDRESS="0xpayee"))

    def test_payment_required_response(self):
        """402 carries the challenge in body and headers."""
        response = PaymentRequired(self.requirement(), price="0.000001 APT", network="aptos:testnet").to_response()

        assert response.status_code == 402
        body = json.loads(response.body.decode())
        assert body["error"] == "Payment Required"
        assert body["message"] == "Test"
        assert body["price"] == "0.000001 APT"
        assert body["network"] == "aptos:testnet"
        assert response.headers[X_PAYMENT_REQUIRED_HEADER] == body["paymentRequired"]

    def test_missing_identity_response(self):
        """400 explains the missing header."""
        response = MissingIdentity().to_response()

        assert response.status_code == 400
        assert "X-Agent-Address" in json.loads(response.body.decode())["error"]

    def test_trust_response(self):
        """403 includes required and current scores."""
        body = TrustTooLow(required=10.0, current=5.0).body()

        assert body["required"] == 10.0
        assert body["current"] == 5.0
        assert "Required: 10.0" in body["message"]

    def test_spell_response(self):
        """403 with a generic hint."""
        rejection = SpellMismatch()
        assert rejection.status_code == 403
        assert "hint" in rejection.body()

    def test_ownership_response(self):
        """403 lists missing shards."""
        body = MissingOwnedResource(missing=[5], required=[1, 5], owned=[1]).body()

        assert body["missing"] == [5]
        assert body["message"] == "You need shard 5 to proceed"

    def test_no_headers_for_plain_rejections(self):
        """Non-payment rejections don't carry challenge headers."""
        response = GateRejection("nope").to_response()
        assert X_PAYMENT_REQUIRED_HEADER not in response.headers


class TestEncodePaymentResponse:
    """Test receipt header encoding."""

    def test_encodes_tx_hash(self):
        """Receipt is JSON with the tx hash."""
        assert json.loads(encode_payment_response("0xdead")) == {"txHash": "0xdead"}


class TestGateMiddleware:
    """Test the middleware on a minimal app."""

    def create_test_app(self, result: SettlementResult = None) -> FastAPI:
        app = FastAPI()

        @app.get("/paid")
        async def paid(request: Request):
            context = get_gate_context(request)
            return {"identity": context.payer_identity, "tx": context.tx_hash}

        @app.get("/free")
        async def free(request: Request):
            return {"context": get_gate_context(request) is not None}

        facilitator = MagicMock(spec=FacilitatorClient)
        facilitator.verify_and_settle = AsyncMock(
            return_value=result or SettlementResult(status=SettlementStatus.SETTLED, tx_hash="0xabc")
        )
        deps = GateDependencies(
            settings=Settings(X402_PAY_TO_ADDRESS="0xpayee"),
            facilitator=facilitator,
            reputation=DemoReputationProvider(),
            ownership=DemoOwnershipProvider(),
        )
        registry = RouteRegistry([
            RoutePricingEntry(
                path="/paid",
                price="100",
                description="Paid endpoint",
                gates=(GateSpec(GateKind.PAYMENT), GateSpec(GateKind.IDENTITY)),
            ),
        ])
        app.add_middleware(X402GateMiddleware, registry=registry, deps=deps)
        return app

    def proof(self) -> str:
        from base64 import b64encode
        return b64encode(json.dumps({"sender": "0xagent"}).encode()).decode()

    def test_unregistered_route_passes_through(self):
        """Free routes are not gated and get no context."""
        response = TestClient(self.create_test_app()).get("/free")

        assert response.status_code == 200
        assert response.json() == {"context": False}

    def test_registered_route_without_payment(self):
        """Gated routes return 402 without payment."""
        response = TestClient(self.create_test_app()).get("/paid")
        assert response.status_code == 402

    def test_context_reaches_endpoint(self):
        """The endpoint sees the GateContext populated by the gates."""
        response = TestClient(self.create_test_app()).get(
            "/paid", headers={"X-Payment": self.proof(), "X-Agent-Address": "0xagent"}
        )

        assert response.status_code == 200
        assert response.json() == {"identity": "0xagent", "tx": "0xabc"}
        assert json.loads(response.headers[X_PAYMENT_RESPONSE_HEADER]) == {"txHash": "0xabc"}

    def test_second_gate_rejection(self):
        """A later gate can still reject after payment."""
        response = TestClient(self.create_test_app()).get("/paid", headers={"X-Payment": self.proof()})

        assert response.status_code == 400
        assert X_PAYMENT_RESPONSE_HEADER.lower() not in response.headers


class TestGateContext:
    """Test the per-request context."""

    def test_no_settlement(self):
        """Without settlement there's no receipt."""
        context = GateContext()
        assert context.tx_hash is None
        assert context.payment_info() is None

    def test_failed_settlement_has_no_receipt(self):
        """A failed settlement never yields a tx hash."""
        context = GateContext(settlement=SettlementResult(
            status=SettlementStatus.SETTLEMENT_FAILED, tx_hash="0xnope"
        ))
        assert context.tx_hash is None
