# app/x402/facilitator.py
"""
Client for the external x402 facilitator.

Payment handling is a two-step saga against the facilitator:

1. POST /verify  - checks the proof without committing it on-chain
2. POST /settle  - submits the transaction and waits for confirmation

Settlement is never attempted unless verification succeeded. Every failure is
turned into a SettlementResult here, so callers never see a raw network
exception. A proof that verified but did not settle is reported separately
(SETTLEMENT_FAILED / ABANDONED) from one that never verified.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from app.x402.requirements import PaymentRequirement

logger = logging.getLogger(__name__)

# Reference used when the facilitator confirms settlement without a hash
SETTLED_WITHOUT_REFERENCE = "completed"


class SettlementStatus(Enum):
    SETTLED = "settled"
    VERIFICATION_FAILED = "verification_failed"
    SETTLEMENT_FAILED = "settlement_failed"  # verified, not settled
    ABANDONED = "abandoned"  # verified, client left before settlement
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a verify + settle round trip."""

    status: SettlementStatus
    tx_hash: Optional[str] = None
    error_detail: Optional[str] = None
    payer: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is SettlementStatus.SETTLED

    @property
    def verified(self) -> bool:
        return self.status in (
            SettlementStatus.SETTLED,
            SettlementStatus.SETTLEMENT_FAILED,
            SettlementStatus.ABANDONED,
        )


class _Unreachable(Exception):
    pass


class FacilitatorClient:
    """
    Async HTTP client for a facilitator's /verify and /settle endpoints.

    Args:
        base_url: Facilitator base URL (e.g. https://host/facilitator)
        timeout_seconds: Timeout applied to each facilitator call
        require_tx_reference: Treat a settle response without txHash/hash as a failure
        http_client: Optional pre-built httpx.AsyncClient (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        require_tx_reference: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = str(base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.timeout = httpx.Timeout(timeout_seconds)
        self.require_tx_reference = require_tx_reference
        self._http_client = http_client

    async def verify_and_settle(
        self,
        proof: Dict[str, Any],
        requirement: PaymentRequirement,
        is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> SettlementResult:
        """
        Verify a payment proof, then settle it.

        Args:
            proof: Decoded payment payload, forwarded verbatim
            requirement: The requirement the proof must satisfy
            is_cancelled: Optional check run between verify and settle; when it
                returns True settlement is skipped

        Returns:
            SettlementResult describing how far the saga got
        """
        body = {
            "paymentPayload": proof,
            "paymentRequirements": requirement.to_wire(),
        }
        payer = _payer_of(proof)
        logger.info(f"x402: Verifying payment from {payer or 'unknown'}...")

        try:
            verify_response = await self._post("/verify", body)
            if not verify_response.is_success:
                detail = verify_response.text or f"HTTP {verify_response.status_code}"
                logger.warning(f"x402: Verification rejected ({verify_response.status_code}): {detail}")
                return SettlementResult(
                    status=SettlementStatus.VERIFICATION_FAILED,
                    error_detail=detail,
                    payer=payer,
                )

            verify_data = _json_or_empty(verify_response)
            if verify_data.get("isValid") is False:
                detail = verify_data.get("invalidReason") or "Invalid payment"
                logger.warning(f"x402: Verification rejected: {detail}")
                return SettlementResult(
                    status=SettlementStatus.VERIFICATION_FAILED,
                    error_detail=detail,
                    payer=payer,
                )
            payer = verify_data.get("payer") or payer

            if is_cancelled is not None and await is_cancelled():
                logger.warning(f"x402: Client disconnected after verification, not settling payment from {payer}")
                return SettlementResult(
                    status=SettlementStatus.ABANDONED,
                    error_detail="Client disconnected before settlement",
                    payer=payer,
                )

            settle_response = await self._post("/settle", body)
            if not settle_response.is_success:
                detail = settle_response.text or f"HTTP {settle_response.status_code}"
                logger.error(f"x402: Settlement failed ({settle_response.status_code}): {detail}")
                return SettlementResult(
                    status=SettlementStatus.SETTLEMENT_FAILED,
                    error_detail=detail,
                    payer=payer,
                )

            try:
                settle_data = settle_response.json()
            except ValueError as e:
                raise _Unreachable(f"Malformed settle response: {e}") from e
            if not isinstance(settle_data, dict):
                raise _Unreachable("Malformed settle response: expected a JSON object")

            if settle_data.get("success") is False:
                detail = settle_data.get("errorReason") or "Settlement rejected"
                logger.error(f"x402: Settlement rejected: {detail}")
                return SettlementResult(
                    status=SettlementStatus.SETTLEMENT_FAILED,
                    error_detail=detail,
                    payer=payer,
                )

        except asyncio.TimeoutError:
            logger.error(f"x402: Facilitator did not answer within {self.timeout_seconds}s")
            return SettlementResult(
                status=SettlementStatus.UNREACHABLE,
                error_detail=f"Facilitator timed out after {self.timeout_seconds}s",
                payer=payer,
            )
        except (httpx.HTTPError, _Unreachable) as e:
            logger.error(f"x402: Facilitator unreachable: {e}")
            return SettlementResult(
                status=SettlementStatus.UNREACHABLE,
                error_detail=str(e) or e.__class__.__name__,
                payer=payer,
            )

        tx_hash = settle_data.get("txHash") or settle_data.get("hash")
        if not tx_hash:
            if self.require_tx_reference:
                logger.error("x402: Settlement response carried no transaction reference")
                return SettlementResult(
                    status=SettlementStatus.SETTLEMENT_FAILED,
                    error_detail="Settlement response carried no transaction reference",
                    payer=payer,
                )
            tx_hash = SETTLED_WITHOUT_REFERENCE

        logger.info(f"x402: Payment SETTLED via facilitator. Tx: {tx_hash}")
        return SettlementResult(status=SettlementStatus.SETTLED, tx_hash=tx_hash, payer=payer)

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> httpx.Response:
        # httpx timeouts are per phase; this bounds the whole call
        return await asyncio.wait_for(self._send(endpoint, body), timeout=self.timeout_seconds)

    async def _send(self, endpoint: str, body: Dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}{endpoint}"
        if self._http_client is not None:
            return await self._http_client.post(url, json=body, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=body)


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    """Parse a verify body; an empty body means the status code is the verdict."""
    if not response.content.strip():
        return {}
    try:
        data = response.json()
    except ValueError as e:
        raise _Unreachable(f"Malformed verify response: {e}") from e
    return data if isinstance(data, dict) else {}


def _payer_of(proof: Dict[str, Any]) -> Optional[str]:
    for key in ("sender", "payer", "from"):
        value = proof.get(key)
        if isinstance(value, str) and value:
            return value
    return None
