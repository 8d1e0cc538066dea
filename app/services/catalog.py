# app/services/catalog.py
"""Static resources served behind the gates: the five shards and the agent database."""
from typing import Any, Dict, Optional

TOTAL_SHARDS = 5

SHARDS: Dict[int, Dict[str, Any]] = {
    1: {
        "id": 1,
        "name": "The Observer",
        "fragment": "You see the flow of value...",
        "data": b"observer_shard_1".hex(),
        "description": "You have learned to observe the x402 flow",
        "next_hint": "Level 2 requires trust. Build your reputation.",
    },
    2: {
        "id": 2,
        "name": "The Sybil",
        "fragment": "Trust is earned, not given...",
        "data": b"sybil_shard_2".hex(),
        "description": "Your reputation proves you are not a Sybil",
        "next_hint": "Level 3 requires a soulbound identity.",
    },
    3: {
        "id": 3,
        "name": "The Ghost",
        "fragment": "Bound forever to the chain...",
        "data": b"ghost_shard_3".hex(),
        "description": "You have bound your soul to the chain",
        "next_hint": "Level 4 requires the Magic Spell from the Oracle.",
    },
    4: {
        "id": 4,
        "name": "The Mirror",
        "fragment": "You found the reflection...",
        "data": b"mirror_shard_4".hex(),
        "description": "You have seen through the Oracle",
        "next_hint": "Level 5 awaits in the Void. Bring great value.",
    },
    5: {
        "id": 5,
        "name": "The Void",
        "fragment": "The final piece reveals the Genesis...",
        "data": b"void_shard_5".hex(),
        "description": "You have embraced the void",
        "next_hint": "Call sentience::genesis::assemble to claim the Genesis Prime NFT!",
    },
}

AGENT_DATABASE: Dict[str, Any] = {
    "agents": 42,
    "activeAgents": 28,
    "totalTransactions": 1337,
    "averageTrustScore": 0.85,
    "topAgents": [
        {"name": "TradingBot-X", "trustScore": 0.95},
        {"name": "DataAnalyzer-Pro", "trustScore": 0.92},
        {"name": "SecurityAgent-1", "trustScore": 0.88},
    ],
}


def get_shard(level: int) -> Optional[Dict[str, Any]]:
    shard = SHARDS.get(level)
    return dict(shard) if shard is not None else None
