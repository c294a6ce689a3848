from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from backend.auth import require_user_id
from backend import repositories
from backend.schemas import MetaPayload

router = APIRouter()


@router.get("/v1/meta/{name}")
async def get_meta(name: str, user_id: str = Depends(require_user_id)):
    value, found = await repositories.get_meta(user_id, name)
    if not found:
        raise HTTPException(status_code=404, detail="Meta value not found")
    return {"name": name, "value": value}


@router.put("/v1/meta/{name}")
async def set_meta(name: str, payload: MetaPayload, user_id: str = Depends(require_user_id)):
    if not name.strip():
        raise HTTPException(status_code=400, detail="Meta name is required")
    await repositories.set_meta(user_id, name, payload.value)
    return {"ok": True}
