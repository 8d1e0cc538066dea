# app/x402/gates.py
"""
Gates and the chain that runs them.

A gate inspects the request headers and the per-request GateContext. It either
passes (optionally recording what it learned in the context) or raises a
GateRejection. Routes declare an ordered list of GateSpec values; GateChain
runs them in that order and stops at the first rejection, so later gates never
execute once an earlier one has failed.

Request lifecycle:
    ENTER -> CHECK gate 1 -> ... -> CHECK gate n -> HANDLER -> RESPONDED
                  |                      |
                  +------> REJECTED <----+
"""
import hmac
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional, Sequence

from fastapi import Request
from x402.encoding import safe_base64_decode

from app.core.config import Settings
from app.services.reputation import OwnershipProvider, ReputationProvider, to_display_score
from app.x402.audit import AuditLog
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
from app.x402.requirements import build_payment_requirement, format_price

if TYPE_CHECKING:
    from app.x402.registry import RoutePricingEntry

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-Payment"
PAYMENT_SIGNATURE_HEADER = "Payment-Signature"
X_AGENT_ADDRESS_HEADER = "X-Agent-Address"
X_MAGIC_SPELL_HEADER = "X-Magic-Spell"


class GateKind(Enum):
    PAYMENT = "payment"
    IDENTITY = "identity"
    TRUST = "trust"
    SPELL = "spell"
    OWNERSHIP = "ownership"


@dataclass(frozen=True)
class GateSpec:
    """Declarative description of one gate on a route."""

    kind: GateKind
    min_score: Optional[int] = None
    required_resources: FrozenSet[int] = frozenset()


@dataclass
class GateContext:
    """State accumulated while a single request passes through its gates."""

    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    payer_identity: Optional[str] = None
    trust_score: Optional[int] = None
    trust_rank: Optional[int] = None
    owned_resources: FrozenSet[int] = frozenset()
    settlement: Optional[SettlementResult] = None

    @property
    def tx_hash(self) -> Optional[str]:
        if self.settlement is not None and self.settlement.success:
            return self.settlement.tx_hash
        return None

    def payment_info(self) -> Optional[Dict[str, str]]:
        if self.tx_hash is None:
            return None
        return {"txHash": self.tx_hash}


@dataclass
class GateDependencies:
    """Collaborators the gates need, built once at startup."""

    settings: Settings
    facilitator: FacilitatorClient
    reputation: ReputationProvider
    ownership: OwnershipProvider
    audit: AuditLog = field(default_factory=AuditLog.disabled)


def decode_payment_proof(header_value: str) -> Optional[Dict[str, Any]]:
    """
    Decode a base64 payment proof header.

    Returns:
        The decoded JSON object, or None if the header is not base64 JSON
        describing an object
    """
    try:
        decoded_str = safe_base64_decode(header_value)
        if decoded_str is None:
            logger.warning("x402: Failed to decode payment header: invalid base64")
            return None
        payload = json.loads(decoded_str)
    except ValueError as e:
        logger.warning(f"x402: Failed to decode payment header: {e}")
        return None

    if not isinstance(payload, dict):
        logger.warning("x402: Payment header does not decode to a JSON object")
        return None
    return payload


def _resolve_identity(request: Request, context: GateContext) -> str:
    if context.payer_identity:
        return context.payer_identity
    identity = (request.headers.get(X_AGENT_ADDRESS_HEADER) or "").strip()
    if not identity:
        raise MissingIdentity()
    context.payer_identity = identity
    return identity


class Gate:
    kind: GateKind

    async def check(self, request: Request, context: GateContext) -> None:
        raise NotImplementedError


class PaymentGate(Gate):
    """Requires a payment proof that the facilitator verifies and settles."""

    kind = GateKind.PAYMENT

    def __init__(self, price: str, description: str, deps: GateDependencies):
        self.price = price
        self.description = description
        self.deps = deps

    async def check(self, request: Request, context: GateContext) -> None:
        settings = self.deps.settings
        audit = self.deps.audit
        requirement = build_payment_requirement(self.price, self.description, settings)
        display_price = format_price(self.price, settings)

        header = request.headers.get(X_PAYMENT_HEADER) or request.headers.get(PAYMENT_SIGNATURE_HEADER)
        if not header:
            logger.info(f"x402: No payment header, returning 402 for {display_price}")
            audit.log_payment_required_sent(
                client_ip=context.client_ip,
                amount=self.price,
                network=settings.X402_NETWORK,
                payee=settings.X402_PAY_TO_ADDRESS,
                description=self.description,
                request_id=context.request_id,
            )
            raise PaymentRequired(requirement, price=display_price, network=settings.X402_NETWORK_LABEL)

        proof = decode_payment_proof(header)
        if proof is None:
            raise PaymentRequired(
                requirement,
                price=display_price,
                network=settings.X402_NETWORK_LABEL,
                message="Invalid payment header format",
            )

        audit.log_payment_received(
            client_ip=context.client_ip,
            payer=proof.get("sender") or proof.get("payer"),
            amount=self.price,
            network=settings.X402_NETWORK,
            request_id=context.request_id,
        )

        result = await self.deps.facilitator.verify_and_settle(
            proof, requirement, is_cancelled=request.is_disconnected
        )
        context.settlement = result

        if result.verified:
            audit.log_payment_verified(
                client_ip=context.client_ip,
                payer=result.payer,
                request_id=context.request_id,
            )

        if result.success:
            audit.log_payment_settled(
                client_ip=context.client_ip,
                payer=result.payer,
                tx_hash=result.tx_hash,
                network=settings.X402_NETWORK,
                amount=self.price,
                request_id=context.request_id,
            )
            logger.info(f"x402: Access granted: {self.description}")
            return

        audit.log_payment_failed(
            client_ip=context.client_ip,
            status=result.status.value,
            detail=result.error_detail,
            payer=result.payer,
            request_id=context.request_id,
        )
        detail = result.error_detail or "Unknown reason"
        if result.status is SettlementStatus.VERIFICATION_FAILED:
            raise VerificationFailed(detail, requirement)
        if result.status is SettlementStatus.UNREACHABLE:
            raise FacilitatorUnreachable(detail)
        raise SettlementFailed(detail, requirement)


class IdentityGate(Gate):
    """Requires the caller to identify itself with X-Agent-Address."""

    kind = GateKind.IDENTITY

    async def check(self, request: Request, context: GateContext) -> None:
        _resolve_identity(request, context)


class TrustGate(Gate):
    """Requires a trust score at or above min_score (inclusive)."""

    kind = GateKind.TRUST

    def __init__(self, min_score: int, reputation: ReputationProvider):
        self.min_score = min_score
        self.reputation = reputation

    async def check(self, request: Request, context: GateContext) -> None:
        identity = _resolve_identity(request, context)
        score = await self.reputation.score_of(identity)
        context.trust_score = score
        context.trust_rank = await self.reputation.rank_of(identity)

        if score < self.min_score:
            logger.info(f"Trust score {score} below {self.min_score} for {identity}")
            raise TrustTooLow(
                required=to_display_score(self.min_score),
                current=to_display_score(score),
            )


class SpellGate(Gate):
    """Requires X-Magic-Spell to match the configured secret, ignoring case."""

    kind = GateKind.SPELL

    def __init__(self, secret: str):
        self._secret = secret.lower().encode("utf-8")

    async def check(self, request: Request, context: GateContext) -> None:
        provided = (request.headers.get(X_MAGIC_SPELL_HEADER) or "").strip()
        if not provided or not hmac.compare_digest(provided.lower().encode("utf-8"), self._secret):
            raise SpellMismatch()


class OwnershipGate(Gate):
    """Requires the caller to own every resource in required."""

    kind = GateKind.OWNERSHIP

    def __init__(self, required: FrozenSet[int], ownership: OwnershipProvider):
        self.required = frozenset(required)
        self.ownership = ownership

    async def check(self, request: Request, context: GateContext) -> None:
        identity = _resolve_identity(request, context)
        owned = frozenset(await self.ownership.owned_resources(identity))
        context.owned_resources = owned

        missing = sorted(self.required - owned)
        if missing:
            raise MissingOwnedResource(
                missing=missing,
                required=sorted(self.required),
                owned=sorted(owned),
            )


def build_gate(spec: GateSpec, route: "RoutePricingEntry", deps: GateDependencies) -> Gate:
    """Turn a route's GateSpec into a runnable gate."""
    if spec.kind is GateKind.PAYMENT:
        return PaymentGate(route.price, route.description, deps)
    if spec.kind is GateKind.IDENTITY:
        return IdentityGate()
    if spec.kind is GateKind.TRUST:
        min_score = spec.min_score if spec.min_score is not None else deps.settings.TRUST_MIN_SCORE
        return TrustGate(min_score, deps.reputation)
    if spec.kind is GateKind.SPELL:
        return SpellGate(deps.settings.MAGIC_SPELL)
    if spec.kind is GateKind.OWNERSHIP:
        return OwnershipGate(spec.required_resources, deps.ownership)
    raise ValueError(f"Unknown gate kind: {spec.kind}")


class GateChain:
    """Runs gates in order, stopping at the first rejection."""

    def __init__(self, gates: Sequence[Gate]):
        self.gates: List[Gate] = list(gates)

    @classmethod
    def for_route(cls, route: "RoutePricingEntry", deps: GateDependencies) -> "GateChain":
        return cls([build_gate(spec, route, deps) for spec in route.gates])

    @property
    def kinds(self) -> List[GateKind]:
        return [gate.kind for gate in self.gates]

    async def run(self, request: Request, context: GateContext) -> None:
        for gate in self.gates:
            logger.debug(f"Checking {gate.kind.value} gate")
            await gate.check(request, context)
