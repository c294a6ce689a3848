from __future__ import annotations

from typing import Optional, Dict, Any

from pydantic import BaseModel, Field


class MonthPayload(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class MonthResponse(BaseModel):
    month_key: str
    data: Dict[str, Any]


class MonthBatchPayload(BaseModel):
    months: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class MetaPayload(BaseModel):
    value: Any = None


class MomentCreate(BaseModel):
    id: Optional[str] = None
    content: str
    mood: Optional[str] = None
    category: Optional[str] = None


class MomentPatch(BaseModel):
    content: Optional[str] = None
    mood: Optional[str] = None
    category: Optional[str] = None
