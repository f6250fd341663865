"""Rounds router: /api/status and /api/rounds/* endpoints."""

from fastapi import APIRouter, HTTPException, Query
from starlette.requests import Request

from indexer.deps import get_storage, serialize
from indexer.models import StatusResponse

router = APIRouter()


@router.get("/api/status", response_model=StatusResponse)
async def status(request: Request):
    storage = get_storage(request)
    current = await storage.rounds.get_current()
    return StatusResponse(
        last_height=await storage.ledger.get_last_height(),
        current_round=current["index"] if current else None,
        rounds=await storage.rounds.count(),
        history_events=await storage.history.count(),
        skipped_events=await storage.ledger.count_skipped(),
    )


@router.get("/api/rounds")
async def list_rounds(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    storage = get_storage(request)
    total = await storage.rounds.count()
    items = await storage.rounds.list_recent(limit=limit, offset=(page - 1) * limit)
    total_pages = max(1, (total + limit - 1) // limit)
    return {
        "items": [serialize(r) for r in items],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
    }


@router.get("/api/rounds/{index}")
async def get_round(request: Request, index: int):
    storage = get_storage(request)
    round_row = await storage.rounds.get(index)
    if round_row is None:
        raise HTTPException(status_code=404, detail="Round not found")
    collators = await storage.collator_snapshots.list_for_round(index)
    result = serialize(round_row)
    result["collators"] = [serialize(c) for c in collators]
    result["nominators_count"] = len(await storage.nominator_snapshots.list_for_round(index))
    result["delegations_count"] = await storage.delegations.count(index)
    return result


@router.get("/api/rounds/{index}/collators/{account}/delegations")
async def round_collator_delegations(request: Request, index: int, account: str):
    storage = get_storage(request)
    account = account.lower()
    snapshot = await storage.collator_snapshots.get(index, account)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Collator snapshot not found")
    delegations = await storage.delegations.list_for_collator(index, account)
    result = serialize(snapshot)
    result["delegations"] = [serialize(d) for d in delegations]
    return result
