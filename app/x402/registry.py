# app/x402/registry.py
"""
Route registry / pricing table.

Maps each gated path to its price, description and ordered gate list. Built
once from Settings at startup and read-only afterwards; both the 402
challenge and the gate chain are derived from it.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Optional, Tuple

from app.core.config import Settings
from app.x402.gates import GateKind, GateSpec

logger = logging.getLogger(__name__)

PAYMENT = GateSpec(GateKind.PAYMENT)

# Shards a caller must hold before Level 5 is unlocked
LEVEL_5_REQUIRED_SHARDS = frozenset({1, 2, 3, 4})


@dataclass(frozen=True)
class RoutePricingEntry:
    path: str
    price: str
    description: str
    gates: Tuple[GateSpec, ...] = (PAYMENT,)
    method: str = "GET"

    @property
    def key(self) -> str:
        return f"{self.method.upper()} {self.path}"

    @property
    def gate_kinds(self) -> List[GateKind]:
        return [spec.kind for spec in self.gates]


def _normalize_path(path: str) -> str:
    normalized = path.rstrip("/") or "/"
    if not normalized.startswith("/"):
        normalized = "/" + normalized
    return normalized


class RouteRegistry:
    """Immutable lookup of gated routes by method and path."""

    def __init__(self, entries: List[RoutePricingEntry]):
        routes: Dict[str, RoutePricingEntry] = {}
        seen = set()
        for entry in entries:
            normalized = f"{entry.method.upper()} {_normalize_path(entry.path)}"
            if normalized in seen:
                raise ValueError(f"Duplicate route in registry: {normalized}")
            seen.add(normalized)
            routes[entry.key] = entry
        self._routes = MappingProxyType(routes)

    def lookup(self, method: str, path: str) -> Optional[RoutePricingEntry]:
        """
        Return the entry for a request, or None if the route is not gated.

        Paths match exactly. A trailing-slash variant is left to the router's
        redirect so the client is only charged on the request that is served.
        """
        return self._routes.get(f"{method.upper()} {path}")

    def paths(self) -> List[str]:
        return [entry.path for entry in self._routes.values()]

    def __iter__(self) -> Iterator[RoutePricingEntry]:
        return iter(self._routes.values())

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, key: str) -> bool:
        return key in self._routes


def build_route_registry(settings: Settings) -> RouteRegistry:
    """
    Build the pricing table for this server.

    Args:
        settings: Application settings providing the price tiers and trust threshold

    Returns:
        RouteRegistry with the paid service and the five shard levels
    """
    basic = settings.X402_PRICE_BASIC
    premium = settings.X402_PRICE_PREMIUM
    high = settings.X402_PRICE_HIGH

    entries = [
        RoutePricingEntry(
            path="/service/data",
            price=basic,
            description="Access Sentience Agent Database",
        ),
        RoutePricingEntry(
            path="/shard/level/1",
            price=basic,
            description="Level 1: The Observer - First x402 Payment",
        ),
        RoutePricingEntry(
            path="/shard/level/2",
            price=basic,
            description="Level 2: The Sybil - Trust Score Required",
            gates=(PAYMENT, GateSpec(GateKind.TRUST, min_score=settings.TRUST_MIN_SCORE)),
        ),
        RoutePricingEntry(
            path="/shard/level/3",
            price=basic,
            description="Level 3: The Ghost - Soulbound Identity Required",
            gates=(PAYMENT, GateSpec(GateKind.IDENTITY)),
        ),
        RoutePricingEntry(
            path="/shard/level/4",
            price=premium,
            description="Level 4: The Mirror - Magic Spell Required",
            gates=(PAYMENT, GateSpec(GateKind.SPELL)),
        ),
        RoutePricingEntry(
            path="/shard/level/5",
            price=high,
            description="Level 5: The Void - High Value Transaction",
            gates=(
                PAYMENT,
                GateSpec(GateKind.OWNERSHIP, required_resources=LEVEL_5_REQUIRED_SHARDS),
            ),
        ),
    ]
    registry = RouteRegistry(entries)
    logger.info(f"Route registry loaded with {len(registry)} gated routes")
    return registry
