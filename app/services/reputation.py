# app/services/reputation.py
"""
Identity capabilities used by the trust and ownership gates.

The gates only depend on the two Protocols below. The demo implementations
stand in for on-chain lookups and are injected at startup.
"""
import logging
from typing import FrozenSet, Protocol

logger = logging.getLogger(__name__)

# Trust scores are fixed-point with 6 decimals: 10_000_000 == 10.0
TRUST_SCORE_SCALE = 1_000_000


class ReputationProvider(Protocol):
    async def score_of(self, identity: str) -> int:
        ...

    async def rank_of(self, identity: str) -> int:
        ...


class OwnershipProvider(Protocol):
    async def owned_resources(self, identity: str) -> FrozenSet[int]:
        ...


class DemoReputationProvider:
    """Derives a trust score from the address length (not attested)."""

    def __init__(self, high_score: int = 15_000_000, low_score: int = 5_000_000,
                 min_length: int = 10):
        self.high_score = high_score
        self.low_score = low_score
        self.min_length = min_length

    async def score_of(self, identity: str) -> int:
        score = self.high_score if len(identity) > self.min_length else self.low_score
        logger.debug(f"Demo trust score for {identity}: {score}")
        return score

    async def rank_of(self, identity: str) -> int:
        return 1


class DemoOwnershipProvider:
    """Every caller owns the same fixed set of shards."""

    def __init__(self, owned: FrozenSet[int] = frozenset({1, 2, 3, 4})):
        self.owned = frozenset(owned)

    async def owned_resources(self, identity: str) -> FrozenSet[int]:
        return self.owned


def to_display_score(score: int) -> float:
    """Convert a fixed-point score to its display value (10_000_000 -> 10.0)."""
    return score / TRUST_SCORE_SCALE
