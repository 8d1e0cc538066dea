# app/api/endpoints/shards.py
import logging
from fastapi import APIRouter, HTTPException, Path, Request

from app.api.models.shard import ProgressResponse, Shard, ShardResponse
from app.services.catalog import TOTAL_SHARDS, get_shard
from app.services.reputation import to_display_score
from app.x402.gates import X_AGENT_ADDRESS_HEADER, GateContext
from app.x402.middleware import get_gate_context

logger = logging.getLogger(__name__)

router = APIRouter()


def _level_details(level: int, context: GateContext) -> dict:
    """What each level reports about the gate the caller passed."""
    if level == 2 and context.trust_score is not None:
        return {"trustScore": to_display_score(context.trust_score)}
    if level == 3:
        return {"soulbound": True, "agent": context.payer_identity}
    if level == 4:
        return {"spell": "verified"}
    if level == 5:
        return {"complete": True}
    return {}


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(request: Request) -> ProgressResponse:
    """
    Free endpoint reporting which shards the caller holds.

    Uses the X-Agent-Address header; anonymous callers get an empty collection.
    """
    agent = (request.headers.get(X_AGENT_ADDRESS_HEADER) or "").strip()
    if not agent:
        return ProgressResponse(agent="unknown", shards_collected=[], total_shards=TOTAL_SHARDS)

    ownership = request.app.state.gate_deps.ownership
    owned = sorted(await ownership.owned_resources(agent))
    return ProgressResponse(
        agent=agent,
        shards_collected=owned,
        total_shards=TOTAL_SHARDS,
        genesis_assembled=len(owned) == TOTAL_SHARDS,
    )


@router.get("/level/{level}", response_model=ShardResponse, response_model_exclude_none=True)
async def get_shard_level(
    request: Request,
    level: int = Path(..., description="Shard level (1-5)"),
) -> ShardResponse:
    """
    Serve an unlocked shard.

    Every level is payment-gated; levels 2-5 add trust, identity, spell and
    ownership gates. All gates have passed by the time this runs.
    """
    shard = get_shard(level)
    context = get_gate_context(request)
    if shard is None or context is None:
        raise HTTPException(status_code=404, detail=f"Shard level {level} does not exist")

    logger.info(f"Shard {level} ({shard['name']}) unlocked for {context.payer_identity or context.client_ip}")
    return ShardResponse(
        level=level,
        name=shard["name"],
        fragment=shard["fragment"],
        shard=Shard(
            id=shard["id"],
            name=shard["name"],
            data=shard["data"],
            description=shard["description"],
        ),
        next_hint=shard["next_hint"],
        payment=context.payment_info(),
        **_level_details(level, context),
    )
