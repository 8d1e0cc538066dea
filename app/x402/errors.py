# app/x402/errors.py
"""
Typed rejections raised by gates.

Every rejection is terminal for the request. Each carries the HTTP status,
a short error title, a human-readable message and any structured fields
(required/current/missing/hint) a client needs to correct and retry.
"""
from typing import Any, Dict, Optional

from starlette.responses import JSONResponse

from app.x402.requirements import PaymentRequirement, encode_payment_requirement

X_PAYMENT_REQUIRED_HEADER = "X-Payment-Required"
PAYMENT_REQUIRED_HEADER = "Payment-Required"


class GateRejection(Exception):
    """Base class for a request rejected by a gate."""

    status_code: int = 400
    error: str = "Request Rejected"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def body(self) -> Dict[str, Any]:
        content = {"error": self.error, "message": self.message}
        content.update(self.details)
        return content

    def headers(self) -> Dict[str, str]:
        return {}

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.body(),
            headers=self.headers() or None,
        )


class MissingIdentity(GateRejection):
    status_code = 400
    error = "Missing X-Agent-Address header"

    def __init__(self):
        super().__init__(
            "You must provide your agent address to access this endpoint"
        )


class _PaymentRejection(GateRejection):
    """Rejection that re-issues the payment challenge."""

    status_code = 402

    def __init__(self, message: str, requirement: PaymentRequirement, **details: Any):
        super().__init__(message, **details)
        self.requirement = requirement
        self.encoded_requirement = encode_payment_requirement(requirement)

    def body(self) -> Dict[str, Any]:
        content = super().body()
        content["paymentRequired"] = self.encoded_requirement
        return content

    def headers(self) -> Dict[str, str]:
        return {
            X_PAYMENT_REQUIRED_HEADER: self.encoded_requirement,
            PAYMENT_REQUIRED_HEADER: self.encoded_requirement,
        }


class PaymentRequired(_PaymentRejection):
    """No usable proof was supplied: the x402 challenge."""

    error = "Payment Required"

    def __init__(self, requirement: PaymentRequirement, price: str, network: str,
                 message: Optional[str] = None):
        super().__init__(
            message or requirement.description,
            requirement,
            price=price,
            network=network,
        )


class VerificationFailed(_PaymentRejection):
    """The facilitator rejected the proof; settlement was not attempted."""

    error = "Payment Failed"

    def __init__(self, detail: str, requirement: PaymentRequirement):
        super().__init__(f"Verify failed: {detail}", requirement)
        self.detail = detail


class SettlementFailed(_PaymentRejection):
    """The proof was valid but could not be settled."""

    error = "Payment Failed"

    def __init__(self, detail: str, requirement: PaymentRequirement):
        super().__init__(f"Settle failed: {detail}", requirement)
        self.detail = detail


class FacilitatorUnreachable(GateRejection):
    """Network, timeout or parse error talking to the facilitator. Safe to retry."""

    status_code = 502
    error = "Facilitator Unreachable"

    def __init__(self, detail: str):
        super().__init__(
            "Payment could not be processed right now, please retry",
            retryable=True,
        )
        self.detail = detail


class TrustTooLow(GateRejection):
    status_code = 403
    error = "Trust Score too low"

    def __init__(self, required: float, current: float):
        super().__init__(
            f"Your trust score is {current}. Required: {required}. "
            "Conduct more peer transactions to boost your score.",
            required=required,
            current=current,
        )


class SpellMismatch(GateRejection):
    """Wrong or missing secret phrase. Never reveals the expected value."""

    status_code = 403
    error = "Invalid Magic Spell"

    def __init__(self):
        super().__init__(
            "The Oracle does not recognize this incantation",
            hint="Seek the spell in the reputation module...",
        )


class MissingOwnedResource(GateRejection):
    status_code = 403
    error = "Missing required shards"

    def __init__(self, missing: list, required: list, owned: list):
        super().__init__(
            f"You need shard {missing[0]} to proceed",
            missing=missing,
            required=required,
            owned=owned,
        )
