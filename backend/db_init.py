from __future__ import annotations

from sqlalchemy import text as sql_text

from backend.db import get_engine


MONTHS_TABLE = "month_documents"
META_TABLE = "user_meta"
MOMENTS_TABLE = "moments"


async def init_db():
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {MONTHS_TABLE} (
                    user_id TEXT NOT NULL,
                    month_key TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, month_key)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {META_TABLE} (
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value_json TEXT NOT NULL,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, name)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {MOMENTS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    mood TEXT,
                    category TEXT,
                    edit_count INTEGER DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
        )
        await conn.execute(
            sql_text(f"CREATE INDEX IF NOT EXISTS idx_moments_user_created ON {MOMENTS_TABLE} (user_id, created_at)")
        )
