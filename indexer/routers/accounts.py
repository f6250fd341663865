"""Accounts router: /api/collators/* and /api/history endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from starlette.requests import Request

from indexer.deps import get_storage, serialize
from indexer.storage import HISTORY_KINDS

router = APIRouter()


@router.get("/api/collators")
async def list_collators(request: Request):
    storage = get_storage(request)
    return await storage.collators.list_all()


@router.get("/api/collators/{account}")
async def get_collator(
    request: Request,
    account: str,
    rounds: int = Query(default=20, ge=1, le=500),
):
    storage = get_storage(request)
    account = account.lower()
    collator = await storage.collators.get(account)
    if collator is None:
        raise HTTPException(status_code=404, detail="Collator not found")
    snapshots = await storage.collator_snapshots.list_for_account(account, limit=rounds)
    return {
        "id": collator["id"],
        "apr24h": collator["apr24h"],
        "rounds": [serialize(s) for s in snapshots],
    }


@router.get("/api/history")
async def list_history(
    request: Request,
    account: Optional[str] = Query(default=None, max_length=66),
    kind: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
):
    if kind is not None and kind not in HISTORY_KINDS:
        raise HTTPException(status_code=400, detail=f"kind must be one of {', '.join(HISTORY_KINDS)}")
    storage = get_storage(request)
    items = await storage.history.list(
        account=account.lower() if account else None, kind=kind, limit=limit,
    )
    return [serialize(e) for e in items]
