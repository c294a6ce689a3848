from __future__ import annotations

import re

from fastapi import APIRouter, Depends, HTTPException

from backend.auth import require_user_id
from backend import repositories
from backend.schemas import MonthBatchPayload, MonthPayload

router = APIRouter()

MONTH_KEY_RE = re.compile(r"^todo-calendar-\d{4}-(0[1-9]|1[0-2])$")


def _check_month_key(month_key: str) -> str:
    if not MONTH_KEY_RE.match(month_key or ""):
        raise HTTPException(status_code=400, detail=f"Invalid month key: {month_key}")
    return month_key


@router.get("/v1/months")
async def list_months(user_id: str = Depends(require_user_id)):
    items = await repositories.list_months(user_id)
    return {"items": items}


@router.post("/v1/months/batch")
async def set_months(payload: MonthBatchPayload, user_id: str = Depends(require_user_id)):
    for month_key in payload.months:
        _check_month_key(month_key)
    written = await repositories.set_months(user_id, payload.months)
    return {"ok": True, "written": written}


@router.get("/v1/months/{month_key}")
async def get_month(month_key: str, user_id: str = Depends(require_user_id)):
    _check_month_key(month_key)
    data = await repositories.get_month(user_id, month_key)
    if data is None:
        raise HTTPException(status_code=404, detail="Month not found")
    return {"month_key": month_key, "data": data}


@router.put("/v1/months/{month_key}")
async def set_month(month_key: str, payload: MonthPayload, user_id: str = Depends(require_user_id)):
    _check_month_key(month_key)
    await repositories.set_month(user_id, month_key, payload.data)
    return {"ok": True}
