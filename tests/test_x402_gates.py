# tests/test_x402_gates.py
"""
Unit tests for the individual gates and the gate chain.
"""
import asyncio
import json
from base64 import b64encode
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Request
from starlette.datastructures import Headers

from app.core.config import Settings
from app.services.reputation import DemoOwnershipProvider, DemoReputationProvider
from app.x402.errors import (
    FacilitatorUnreachable,
    MissingIdentity,
    MissingOwnedResource,
    PaymentRequired,
    SettlementFailed,
    SpellMismatch,
    TrustTooLow,
    VerificationFailed,
)
from app.x402.facilitator import FacilitatorClient, SettlementResult, SettlementStatus
from app.x402.gates import (
    Gate,
    GateChain,
    GateContext,
    GateDependencies,
    GateKind,
    GateSpec,
    IdentityGate,
    OwnershipGate,
    PaymentGate,
    SpellGate,
    TrustGate,
    build_gate,
    decode_payment_proof,
)
from app.x402.registry import RoutePricingEntry


def make_request(headers=None) -> Request:
    request = MagicMock(spec=Request)
    request.headers = Headers(headers or {})
    request.is_disconnected = AsyncMock(return_value=False)
    return request


def make_proof_header(sender: str = "0x1234567890abcdef") -> str:
    payload = {"sender": sender, "transaction": "AAECAwQF", "signature": "c2ln"}
    return b64encode(json.dumps(payload).encode("utf-8")).decode("utf-8")


def make_deps(result: SettlementResult = None, **settings_overrides) -> GateDependencies:
    facilitator = MagicMock(spec=FacilitatorClient)
    facilitator.verify_and_settle = AsyncMock(
        return_value=result or SettlementResult(status=SettlementStatus.SETTLED, tx_hash="0xdead")
    )
    return GateDependencies(
        settings=Settings(X402_PAY_TO_ADDRESS="0xpayee", **settings_overrides),
        facilitator=facilitator,
        reputation=DemoReputationProvider(),
        ownership=DemoOwnershipProvider(),
    )


def check(gate: Gate, request: Request, context: GateContext = None) -> GateContext:
    context = context or GateContext()
    asyncio.run(gate.check(request, context))
    return context


class SpyGate(Gate):
    """Gate that records how often it ran."""

    kind = GateKind.TRUST

    def __init__(self):
        self.calls = 0

    async def check(self, request, context):
        self.calls += 1


class TestDecodePaymentProof:
    """Test payment proof header decoding."""

    def test_valid_proof(self):
        """Base64 JSON object decodes to a dict."""
        proof = decode_payment_proof(make_proof_header("0xabc"))
        assert proof["sender"] == "0xabc"

    def test_invalid_base64(self):
        """Invalid base64 returns None."""
        assert decode_payment_proof("invalid-base64-data!!!") is None

    def test_not_json(self):
        """Base64 of non-JSON returns None."""
        assert decode_payment_proof(b64encode(b"hello").decode()) is None

    def test_not_an_object(self):
        """JSON that isn't an object returns None."""
        assert decode_payment_proof(b64encode(b"[1, 2]").decode()) is None


class TestPaymentGate:
    """Test the payment gate."""

    def test_missing_header_raises_challenge(self):
        """No proof header raises PaymentRequired without calling the facilitator."""
        deps = make_deps()
        gate = PaymentGate("100", "Test resource", deps)

        with pytest.raises(PaymentRequired) as exc_info:
            check(gate, make_request())

        assert exc_info.value.status_code == 402
        assert exc_info.value.requirement.max_amount == "100"
        deps.facilitator.verify_and_settle.assert_not_called()

    def test_invalid_header_raises_challenge(self):
        """Undecodable proof re-issues the challenge."""
        deps = make_deps()
        gate = PaymentGate("100", "Test resource", deps)

        with pytest.raises(PaymentRequired) as exc_info:
            check(gate, make_request({"X-Payment": "garbage!!!"}))

        assert "Invalid payment header" in exc_info.value.message
        deps.facilitator.verify_and_settle.assert_not_called()

    def test_settled_payment_passes(self):
        """A settled payment is recorded in the context."""
        gate = PaymentGate("100", "Test resource", make_deps())
        context = check(gate, make_request({"X-Payment": make_proof_header()}))

        assert context.settlement.success is True
        assert context.tx_hash == "0xdead"
        assert context.payment_info() == {"txHash": "0xdead"}

    def test_payment_signature_header_accepted(self):
        """Payment-Signature is accepted as the proof header."""
        gate = PaymentGate("100", "Test resource", make_deps())
        context = check(gate, make_request({"Payment-Signature": make_proof_header()}))

        assert context.tx_hash == "0xdead"

    def test_proof_forwarded_to_facilitator(self):
        """The decoded proof and rebuilt requirement go to the facilitator."""
        deps = make_deps()
        gate = PaymentGate("500", "Premium", deps)
        check(gate, make_request({"X-Payment": make_proof_header("0xabc")}))

        proof, requirement = deps.facilitator.verify_and_settle.call_args.args
        assert proof["sender"] == "0xabc"
        assert requirement.max_amount == "500"
        assert requirement.description == "Premium"

    @pytest.mark.parametrize("status,expected", [
        (SettlementStatus.VERIFICATION_FAILED, VerificationFailed),
        (SettlementStatus.SETTLEMENT_FAILED, SettlementFailed),
        (SettlementStatus.ABANDONED, SettlementFailed),
        (SettlementStatus.UNREACHABLE, FacilitatorUnreachable),
    ])
    def test_failed_outcomes_map_to_rejections(self, status, expected):
        """Each saga outcome maps to its own rejection type."""
        result = SettlementResult(status=status, error_detail="boom")
        gate = PaymentGate("100", "Test", make_deps(result))

        with pytest.raises(expected) as exc_info:
            check(gate, make_request({"X-Payment": make_proof_header()}))

        assert exc_info.value.detail == "boom"

    def test_unreachable_is_502(self):
        """Facilitator outages are reported as 502, not 402."""
        result = SettlementResult(status=SettlementStatus.UNREACHABLE, error_detail="timeout")
        gate = PaymentGate("100", "Test", make_deps(result))

        with pytest.raises(FacilitatorUnreachable) as exc_info:
            check(gate, make_request({"X-Payment": make_proof_header()}))

        assert exc_info.value.status_code == 502


class TestIdentityGate:
    """Test the identity presence gate."""

    def test_missing_header(self):
        """Missing X-Agent-Address is a 400."""
        with pytest.raises(MissingIdentity) as exc_info:
            check(IdentityGate(), make_request())

        assert exc_info.value.status_code == 400

    def test_blank_header(self):
        """Whitespace-only address counts as missing."""
        with pytest.raises(MissingIdentity):
            check(IdentityGate(), make_request({"X-Agent-Address": "   "}))

    def test_identity_recorded(self):
        """The caller's address is stored in the context."""
        context = check(IdentityGate(), make_request({"X-Agent-Address": "0xagent"}))
        assert context.payer_identity == "0xagent"


class TestTrustGate:
    """Test the trust threshold gate."""

    def reputation(self, score: int):
        provider = MagicMock()
        provider.score_of = AsyncMock(return_value=score)
        provider.rank_of = AsyncMock(return_value=3)
        return provider

    def test_just_below_threshold_rejected(self):
        """9_999_999 is below a 10_000_000 minimum."""
        gate = TrustGate(10_000_000, self.reputation(9_999_999))

        with pytest.raises(TrustTooLow) as exc_info:
            check(gate, make_request({"X-Agent-Address": "0xagent"}))

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["required"] == 10
        assert exc_info.value.details["current"] == 9.999999

    def test_exact_threshold_accepted(self):
        """The minimum is inclusive."""
        gate = TrustGate(10_000_000, self.reputation(10_000_000))
        context = check(gate, make_request({"X-Agent-Address": "0xagent"}))

        assert context.trust_score == 10_000_000
        assert context.trust_rank == 3

    def test_requires_identity(self):
        """Trust can't be checked without an address."""
        with pytest.raises(MissingIdentity):
            check(TrustGate(10_000_000, self.reputation(50_000_000)), make_request())

    def test_uses_identity_from_context(self):
        """An identity already in the context is reused."""
        reputation = self.reputation(20_000_000)
        check(TrustGate(10_000_000, reputation), make_request(), GateContext(payer_identity="0xknown"))

        reputation.score_of.assert_awaited_once_with("0xknown")


class TestSpellGate:
    """Test the secret phrase gate."""

    def test_case_insensitive_match(self):
        """0xABC accepts 0xabc."""
        check(SpellGate("0xABC"), make_request({"X-Magic-Spell": "0xabc"}))

    def test_exact_match(self):
        """Identical value is accepted."""
        check(SpellGate("0xABC"), make_request({"X-Magic-Spell": "0xABC"}))

    def test_prefix_rejected(self):
        """0xab is not 0xABC."""
        with pytest.raises(SpellMismatch):
            check(SpellGate("0xABC"), make_request({"X-Magic-Spell": "0xab"}))

    def test_missing_spell_rejected(self):
        """No header is a rejection."""
        with pytest.raises(SpellMismatch) as exc_info:
            check(SpellGate("0xABC"), make_request())

        assert exc_info.value.status_code == 403

    def test_rejection_does_not_reveal_secret(self):
        """The response body never contains the configured spell."""
        with pytest.raises(SpellMismatch) as exc_info:
            check(SpellGate("0xf2dbdeb981aca16eb5cb33eab7"), make_request({"X-Magic-Spell": "wrong"}))

        body = json.dumps(exc_info.value.body()).lower()
        assert "f2dbdeb981aca16eb5cb33eab7" not in body


class TestOwnershipGate:
    """Test the resource ownership gate."""

    def test_superset_passes(self):
        """Owning every required shard passes."""
        gate = OwnershipGate(frozenset({1, 2}), DemoOwnershipProvider(frozenset({1, 2, 3})))
        context = check(gate, make_request({"X-Agent-Address": "0xagent"}))

        assert context.owned_resources == frozenset({1, 2, 3})

    def test_missing_items_listed(self):
        """Missing shards are reported."""
        gate = OwnershipGate(frozenset({1, 2, 3, 4, 5}), DemoOwnershipProvider(frozenset({1, 2, 3, 4})))

        with pytest.raises(MissingOwnedResource) as exc_info:
            check(gate, make_request({"X-Agent-Address": "0xagent"}))

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["missing"] == [5]
        assert exc_info.value.details["owned"] == [1, 2, 3, 4]

    def test_requires_identity(self):
        """Ownership can't be checked without an address."""
        gate = OwnershipGate(frozenset({1}), DemoOwnershipProvider())
        with pytest.raises(MissingIdentity):
            check(gate, make_request())


class TestGateChain:
    """Test ordered, fail-fast evaluation."""

    def test_payment_failure_skips_later_gates(self):
        """A trust gate after a failing payment gate never runs."""
        spy = SpyGate()
        chain = GateChain([PaymentGate("100", "Test", make_deps()), spy])

        with pytest.raises(PaymentRequired):
            asyncio.run(chain.run(make_request(), GateContext()))

        assert spy.calls == 0

    def test_failed_verification_skips_later_gates(self):
        """A rejected proof also stops the chain."""
        spy = SpyGate()
        result = SettlementResult(status=SettlementStatus.VERIFICATION_FAILED, error_detail="bad")
        chain = GateChain([PaymentGate("100", "Test", make_deps(result)), spy])

        with pytest.raises(VerificationFailed):
            asyncio.run(chain.run(make_request({"X-Payment": make_proof_header()}), GateContext()))

        assert spy.calls == 0

    def test_all_gates_run_on_success(self):
        """Every gate runs when all pass."""
        first, second = SpyGate(), SpyGate()
        asyncio.run(GateChain([first, second]).run(make_request(), GateContext()))

        assert first.calls == 1
        assert second.calls == 1

    def test_for_route_preserves_order(self):
        """Chains follow the route's declared gate order."""
        route = RoutePricingEntry(
            path="/test",
            price="100",
            description="Test",
            gates=(
                GateSpec(GateKind.PAYMENT),
                GateSpec(GateKind.TRUST, min_score=1),
                GateSpec(GateKind.SPELL),
                GateSpec(GateKind.OWNERSHIP, required_resources=frozenset({1})),
            ),
        )
        chain = GateChain.for_route(route, make_deps())

        assert chain.kinds == [GateKind.PAYMENT, GateKind.TRUST, GateKind.SPELL, GateKind.OWNERSHIP]


class TestBuildGate:
    """Test GateSpec to gate mapping."""

    def route(self):
        return RoutePricingEntry(path="/test", price="100", description="Test")

    def test_trust_defaults_to_configured_minimum(self):
        """A trust spec without min_score uses TRUST_MIN_SCORE."""
        gate = build_gate(GateSpec(GateKind.TRUST), self.route(), make_deps(TRUST_MIN_SCORE=42))
        assert gate.min_score == 42

    def test_spell_uses_configured_secret(self):
        """The spell gate checks MAGIC_SPELL."""
        gate = build_gate(GateSpec(GateKind.SPELL), self.route(), make_deps(MAGIC_SPELL="0xSECRET"))
        check(gate, make_request({"X-Magic-Spell": "0xsecret"}))

    def test_payment_uses_route_price(self):
        """The payment gate charges the route's price."""
        gate = build_gate(GateSpec(GateKind.PAYMENT), self.route(), make_deps())

        assert isinstance(gate, PaymentGate)
        assert gate.price == "100"
