# app/x402/requirements.py
"""
Payment requirement encoding for x402 challenges.

A PaymentRequirement describes what must be paid to access a resource. It is
rebuilt from the route price and the settings on every request, so the
challenge sent with a 402 and the requirement checked when the client retries
with a proof are always identical. Nothing is stored between the two requests.

Transport form: compact JSON (fixed key order) encoded as base64, sent in the
X-Payment-Required / Payment-Required headers and in the 402 body.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from x402.encoding import safe_base64_decode, safe_base64_encode

from app.core.config import Settings

logger = logging.getLogger(__name__)

X402_VERSION = "1"
SCHEME_EXACT = "exact"
DEFAULT_MIME_TYPE = "application/json"


class PaymentRequirement(BaseModel):
    """Machine-readable description of the payment a resource requires."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: str = X402_VERSION
    network: str
    asset: str
    payee: str
    max_amount: str = Field(alias="maxAmount")
    description: str
    resource: str = ""
    scheme: str = SCHEME_EXACT
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, alias="mimeType")
    output_schema: Optional[Dict[str, Any]] = Field(default=None, alias="outputSchema")
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        """Return the camelCase dict sent to clients and the facilitator."""
        return self.model_dump(by_alias=True)


def build_payment_requirement(
    price: str,
    description: str,
    settings: Settings,
) -> PaymentRequirement:
    """
    Build the payment requirement for a gated route.

    Args:
        price: Amount in the asset's smallest unit (string encoded)
        description: Purpose of the payment, echoed back to the caller
        settings: Application settings (network, asset, payee)

    Returns:
        PaymentRequirement for the "exact" scheme

    Raises:
        ValueError: If price is not a non-negative integer string
    """
    if not str(price).isdigit():
        raise ValueError(f"Price must be an integer amount in smallest units, got {price!r}")

    return PaymentRequirement(
        network=settings.X402_NETWORK,
        asset=settings.X402_ASSET,
        payee=settings.X402_PAY_TO_ADDRESS,
        max_amount=str(price),
        description=description,
        extra={
            "name": settings.PROJECT_NAME,
            "sponsored": settings.X402_SPONSORED,
        },
    )


def encode_payment_requirement(requirement: PaymentRequirement) -> str:
    """Encode a requirement as base64 JSON for the Payment-Required header."""
    payload = json.dumps(requirement.to_wire(), separators=(",", ":"))
    return safe_base64_encode(payload.encode("utf-8"))


def decode_payment_requirement(header_value: str) -> PaymentRequirement:
    """
    Decode a base64 Payment-Required header back into a PaymentRequirement.

    Raises:
        ValueError: If the value is not base64 JSON describing a requirement
    """
    try:
        decoded_str = safe_base64_decode(header_value)
        if decoded_str is None:
            raise ValueError("invalid base64")
        decoded = json.loads(decoded_str)
    except ValueError as e:
        raise ValueError(f"Invalid payment requirement encoding: {e}") from e
    return PaymentRequirement.model_validate(decoded)


def format_price(amount: str, settings: Settings) -> str:
    """
    Format a smallest-unit amount for display.

    Example: "100" with 8 decimals -> "0.000001 APT"
    """
    value = Decimal(int(amount)).scaleb(-settings.X402_ASSET_DECIMALS)
    text = format(value.normalize(), "f")
    return f"{text} {settings.X402_ASSET_SYMBOL}"
