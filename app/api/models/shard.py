# app/api/models/shard.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class PaymentInfo(BaseModel):
    """Settlement reference for the payment that unlocked a resource."""
    txHash: str = Field(..., description="Transaction hash (or 'completed' when the facilitator gave none)")


class Shard(BaseModel):
    id: int
    name: str
    data: str = Field(..., description="Hex-encoded shard payload")
    description: str


class ShardResponse(BaseModel):
    """Response model for an unlocked shard level."""
    success: bool = True
    level: int
    name: str
    fragment: str
    shard: Shard
    next_hint: str
    payment: Optional[PaymentInfo] = None

    # Level-specific proof of what the caller satisfied
    trustScore: Optional[float] = None
    soulbound: Optional[bool] = None
    agent: Optional[str] = None
    spell: Optional[str] = None
    complete: Optional[bool] = None


class ProgressResponse(BaseModel):
    """Response model for a caller's shard collection progress."""
    agent: str
    shards_collected: List[int]
    total_shards: int
    genesis_assembled: bool = False


class ServiceDataResponse(BaseModel):
    """Response model for the paid agent database."""
    success: bool = True
    data: Dict[str, Any]
    payment: Optional[PaymentInfo] = None
