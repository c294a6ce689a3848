from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from backend.auth import require_user_id
from backend import repositories
from backend.schemas import MomentCreate, MomentPatch
from backend.settings import get_settings

router = APIRouter()


@router.get("/v1/moments")
async def list_moments(limit: int = Query(50, ge=1), user_id: str = Depends(require_user_id)):
    limit = min(limit, get_settings().moments_max_limit)
    items = await repositories.list_moments(user_id, limit)
    return {"items": items}


@router.post("/v1/moments")
async def create_moment(payload: MomentCreate, user_id: str = Depends(require_user_id)):
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="Moment content is required")
    try:
        return await repositories.create_moment(user_id, payload.model_dump())
    except repositories.MomentExists:
        raise HTTPException(status_code=409, detail="Moment already exists")
    except repositories.MomentNotFound:
        raise HTTPException(status_code=404, detail="Moment not found")


@router.patch("/v1/moments/{moment_id}")
async def update_moment(moment_id: str, payload: MomentPatch, user_id: str = Depends(require_user_id)):
    updates = payload.model_dump(exclude_unset=True)
    if "content" in updates and not (updates["content"] or "").strip():
        raise HTTPException(status_code=400, detail="Moment content is required")
    try:
        return await repositories.update_moment(user_id, moment_id, updates)
    except repositories.MomentNotFound:
        raise HTTPException(status_code=404, detail="Moment not found")
    except repositories.MomentAlreadyEdited:
        raise HTTPException(
            status_code=409, detail="This moment has already been edited and cannot be edited again"
        )


@router.delete("/v1/moments/{moment_id}", status_code=204)
async def delete_moment(moment_id: str, user_id: str = Depends(require_user_id)):
    if not await repositories.delete_moment(user_id, moment_id):
        raise HTTPException(status_code=404, detail="Moment not found")
    return Response(status_code=204)
