from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text as sql_text

from backend.db import get_sessionmaker
from backend.db_init import META_TABLE, MOMENTS_TABLE, MONTHS_TABLE

logger = logging.getLogger(__name__)

MOMENT_COLUMNS = ["id", "user_id", "content", "mood", "category", "edit_count", "created_at", "updated_at"]

UPSERT_MONTH_SQL = f"""
    INSERT INTO {MONTHS_TABLE} (user_id, month_key, payload_json, updated_at)
    VALUES (:user_id, :month_key, :payload_json, :updated_at)
    ON CONFLICT(user_id, month_key) DO UPDATE SET
        payload_json=EXCLUDED.payload_json,
        updated_at=EXCLUDED.updated_at
"""


class MomentNotFound(Exception):
    pass


class MomentAlreadyEdited(Exception):
    pass


class MomentExists(Exception):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid4().hex


def _loads(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Stored JSON is unreadable; treating as empty")
        return default


def _moment_row(row) -> dict:
    data = dict(row)
    return {
        "id": data["id"],
        "content": data["content"],
        "mood": data.get("mood"),
        "category": data.get("category"),
        "editCount": int(data.get("edit_count") or 0),
        "createdAt": data.get("created_at"),
        "updatedAt": data.get("updated_at"),
    }


# ---- months ----


async def list_months(user_id: str) -> dict[str, dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT month_key, payload_json FROM {MONTHS_TABLE} WHERE user_id = :user_id ORDER BY month_key"),
            {"user_id": user_id},
        )).mappings().all()
    return {row["month_key"]: _loads(row["payload_json"], {}) for row in rows}


async def get_month(user_id: str, month_key: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"SELECT payload_json FROM {MONTHS_TABLE} "
                "WHERE user_id = :user_id AND month_key = :month_key"
            ),
            {"user_id": user_id, "month_key": month_key},
        )).fetchone()
    return _loads(row[0], {}) if row else None


async def set_month(user_id: str, month_key: str, data: dict) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(UPSERT_MONTH_SQL),
            {
                "user_id": user_id,
                "month_key": month_key,
                "payload_json": json.dumps(data, ensure_ascii=False),
                "updated_at": _now_iso(),
            },
        )
        await session.commit()


async def set_months(user_id: str, months: dict[str, dict]) -> int:
    """Upsert several month documents in one transaction."""
    if not months:
        return 0
    stamp = _now_iso()
    params = [
        {
            "user_id": user_id,
            "month_key": month_key,
            "payload_json": json.dumps(data, ensure_ascii=False),
            "updated_at": stamp,
        }
        for month_key, data in months.items()
    ]
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        async with session.begin():
            await session.execute(sql_text(UPSERT_MONTH_SQL), params)
    return len(params)


# ---- meta ----


async def get_meta(user_id: str, name: str):
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT value_json FROM {META_TABLE} WHERE user_id = :user_id AND name = :name"),
            {"user_id": user_id, "name": name},
        )).fetchone()
    if not row:
        return None, False
    return _loads(row[0], None), True


async def set_meta(user_id: str, name: str, value) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"INSERT INTO {META_TABLE} (user_id, name, value_json, updated_at) "
                "VALUES (:user_id, :name, :value_json, :updated_at) "
                "ON CONFLICT(user_id, name) DO UPDATE SET value_json=EXCLUDED.value_json, updated_at=EXCLUDED.updated_at"
            ),
            {"user_id": user_id, "name": name, "value_json": json.dumps(value, ensure_ascii=False), "updated_at": _now_iso()},
        )
        await session.commit()


# ---- moments ----


async def list_moments(user_id: str, limit: int) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {', '.join(MOMENT_COLUMNS)}
                FROM {MOMENTS_TABLE}
                WHERE user_id = :user_id
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            {"user_id": user_id, "limit": int(limit)},
        )).mappings().all()
    return [_moment_row(row) for row in rows]


async def get_moment(user_id: str, moment_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {', '.join(MOMENT_COLUMNS)} FROM {MOMENTS_TABLE} WHERE id = :id AND user_id = :user_id"),
            {"id": moment_id, "user_id": user_id},
        )).mappings().fetchone()
    return _moment_row(row) if row else None


async def create_moment(user_id: str, payload: dict) -> dict:
    """Insert a new moment; an id that already exists is never overwritten."""
    stamp = _now_iso()
    moment_id = str(payload.get("id") or _new_id())
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                sql_text(
                    f"""
                    INSERT INTO {MOMENTS_TABLE} ({', '.join(MOMENT_COLUMNS)})
                    VALUES (:id, :user_id, :content, :mood, :category, 0, :created_at, :updated_at)
                    ON CONFLICT(id) DO NOTHING
                    """
                ),
                {
                    "id": moment_id,
                    "user_id": user_id,
                    "content": payload["content"],
                    "mood": payload.get("mood"),
                    "category": payload.get("category"),
                    "created_at": stamp,
                    "updated_at": stamp,
                },
            )
            if not result.rowcount:
                owner = (await session.execute(
                    sql_text(f"SELECT user_id FROM {MOMENTS_TABLE} WHERE id = :id"),
                    {"id": moment_id},
                )).fetchone()
                if owner is not None and owner[0] == user_id:
                    raise MomentExists(moment_id)
                raise MomentNotFound(moment_id)
    return await get_moment(user_id, moment_id)


async def update_moment(user_id: str, moment_id: str, updates: dict) -> dict:
    """Apply a one-time edit; raises MomentAlreadyEdited on the second attempt."""
    allowed = {key: updates[key] for key in ("content", "mood", "category") if key in updates}
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        async with session.begin():
            row = (await session.execute(
                sql_text(f"SELECT edit_count FROM {MOMENTS_TABLE} WHERE id = :id AND user_id = :user_id"),
                {"id": moment_id, "user_id": user_id},
            )).fetchone()
            if row is None:
                raise MomentNotFound(moment_id)
            if int(row[0] or 0) >= 1:
                raise MomentAlreadyEdited(moment_id)
            assignments = [f"{key} = :{key}" for key in allowed]
            assignments += ["edit_count = edit_count + 1", "updated_at = :updated_at"]
            await session.execute(
                sql_text(
                    f"UPDATE {MOMENTS_TABLE} SET {', '.join(assignments)} "
                    "WHERE id = :id AND user_id = :user_id AND edit_count < 1"
                ),
                {**allowed, "id": moment_id, "user_id": user_id, "updated_at": _now_iso()},
            )
    return await get_moment(user_id, moment_id)


async def delete_moment(user_id: str, moment_id: str) -> bool:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(f"DELETE FROM {MOMENTS_TABLE} WHERE id = :id AND user_id = :user_id"),
            {"id": moment_id, "user_id": user_id},
        )
        await session.commit()
    return bool(result.rowcount)
