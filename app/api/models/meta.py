# app/api/models/meta.py
from pydantic import BaseModel, Field
from typing import List


class HealthResponse(BaseModel):
    """Response model for the liveness probe."""
    status: str = Field(default="healthy", description="Service status")
    version: str = Field(..., description="Server version")


class PricedRoute(BaseModel):
    """A gated route and what it costs."""
    path: str = Field(..., description="Route path")
    price: str = Field(..., description="Price in the asset's smallest unit")
    description: str = Field(..., description="What the payment buys")
    gates: List[str] = Field(..., description="Gates checked, in order")


class MetaResponse(BaseModel):
    """Response model for protocol and network metadata."""
    name: str
    description: str
    version: str
    network: str = Field(..., description="Human-readable network label")
    networkId: str = Field(..., description="Network identifier used in payment requirements")
    moduleAddress: str
    capabilities: List[str]
    paymentAsset: str
    payee: str
    routes: List[PricedRoute] = Field(default_factory=list)
