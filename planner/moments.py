from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from planner.constants import DEFAULT_MOMENT_CATEGORIES, MOMENT_CATEGORIES_META
from planner.context import NOTICE_CONFLICT, NOTICE_ERROR, PlannerContext
from planner.errors import ConflictError, ValidationError
from planner.models import Moment
from planner.ports import Clock

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


class MomentService:
    """
    Journal moments of the signed-in user, kept newest first in ``ctx.moments``.

    Writes are optimistic: the in-memory list changes first and is rolled back
    when the remote call fails. A moment can be edited once.
    """

    def __init__(self, ctx: PlannerContext, remote, *, clock: Clock) -> None:
        self.ctx = ctx
        self._remote = remote
        self._clock = clock

    def _user(self) -> str:
        if self._remote is None or not self.ctx.signed_in:
            raise ValidationError("Sign in to use moments")
        return self.ctx.user_id

    def _publish(self, moments: list[Moment]) -> None:
        self.ctx.moments = moments

    def _index(self, moment_id: str) -> int:
        for index, moment in enumerate(self.ctx.moments):
            if moment.id == moment_id:
                return index
        raise ValidationError(f"Unknown moment: {moment_id}")

    async def load(self, limit: int = 50) -> list[Moment]:
        user_id = self._user()
        try:
            items = await self._remote.list_moments(user_id, limit)
        except Exception:
            logger.exception("Loading moments failed user=%s", user_id)
            self.ctx.notify("Error loading moments", NOTICE_ERROR)
            return self.ctx.moments
        moments = []
        for item in items:
            try:
                moments.append(Moment.model_validate(item))
            except ValueError:
                logger.debug("Skipping malformed moment %r", item)
        self._publish(moments)
        return moments

    def _replace(self, moment: Moment) -> bool:
        """Swap in ``moment`` for the entry with the same id; False when it is gone."""
        moments = list(self.ctx.moments)
        for index, existing in enumerate(moments):
            if existing.id == moment.id:
                moments[index] = moment
                self._publish(moments)
                return True
        return False

    def _remove(self, moment_id: str) -> None:
        self._publish([m for m in self.ctx.moments if m.id != moment_id])

    def _from_server(self, saved: Any, fallback: Moment) -> Moment:
        if not isinstance(saved, dict):
            return fallback
        try:
            return Moment.model_validate(saved)
        except ValueError:
            logger.warning("Malformed moment in server response; keeping local copy of %s", fallback.id)
            return fallback

    async def create(self, content: str, *, mood: str | None = None, category: str | None = None) -> Moment | None:
        user_id = self._user()
        content = (content or "").strip()
        if not content:
            raise ValidationError("Moment content is required")

        stamp = self._clock.now().isoformat()
        moment = Moment(
            id=uuid4().hex,
            content=content,
            mood=_clean(mood),
            category=_clean(category),
            edit_count=0,
            created_at=stamp,
            updated_at=stamp,
        )
        self._publish([moment, *self.ctx.moments])
        try:
            saved = await self._remote.create_moment(user_id, moment.model_dump(by_alias=True, exclude_none=True))
        except Exception:
            logger.exception("Saving moment failed user=%s", user_id)
            self._remove(moment.id)
            self.ctx.notify("Error saving moment", NOTICE_ERROR)
            return None

        moment = self._from_server(saved, moment)
        self._replace(moment)
        return moment

    async def edit(
        self,
        moment_id: str,
        *,
        content: str | None = None,
        mood: str | None = None,
        category: str | None = None,
    ) -> Moment | None:
        user_id = self._user()
        current = self.ctx.moments[self._index(moment_id)]
        if current.edit_count >= 1:
            raise ConflictError("This moment has already been edited and cannot be edited again")

        updates: dict[str, Any] = {}
        if content is not None:
            if not content.strip():
                raise ValidationError("Moment content is required")
            updates["content"] = content.strip()
        if mood is not None:
            updates["mood"] = _clean(mood)
        if category is not None:
            updates["category"] = _clean(category)
        if not updates:
            return current

        edited = current.model_copy(
            update={**updates, "edit_count": current.edit_count + 1, "updated_at": self._clock.now().isoformat()}
        )
        self._replace(edited)

        try:
            saved = await self._remote.update_moment(user_id, moment_id, updates)
        except ConflictError as exc:
            logger.info("Moment %s was already edited: %s", moment_id, exc)
            self._replace(current)
            self.ctx.notify("This moment has already been edited", NOTICE_CONFLICT)
            return None
        except Exception:
            logger.exception("Updating moment %s failed", moment_id)
            self._replace(current)
            self.ctx.notify("Error updating moment", NOTICE_ERROR)
            return None

        edited = self._from_server(saved, edited)
        self._replace(edited)
        return edited

    async def delete(self, moment_id: str) -> bool:
        user_id = self._user()
        index = self._index(moment_id)
        removed = self.ctx.moments[index]
        self._remove(moment_id)
        try:
            await self._remote.delete_moment(user_id, moment_id)
        except Exception:
            logger.exception("Deleting moment %s failed", moment_id)
            moments = list(self.ctx.moments)
            if all(m.id != moment_id for m in moments):
                moments.insert(min(index, len(moments)), removed)
                self._publish(moments)
            self.ctx.notify("Error deleting moment", NOTICE_ERROR)
            return False
        return True

    # ---- queries over the loaded moments ----

    def by_category(self, category: str) -> list[Moment]:
        return [m for m in self.ctx.moments if m.category == category]

    def by_mood(self, mood: str) -> list[Moment]:
        return [m for m in self.ctx.moments if m.mood == mood]

    def search(self, text: str, limit: int = 20) -> list[Moment]:
        needle = (text or "").strip().lower()
        if not needle:
            return []
        found = [
            m
            for m in self.ctx.moments
            if needle in (m.content or "").lower() or needle in (m.category or "").lower()
        ]
        return found[:limit]

    # ---- categories ----

    async def categories(self) -> list[dict]:
        if self._remote is None or not self.ctx.signed_in:
            return [dict(c) for c in DEFAULT_MOMENT_CATEGORIES]
        try:
            raw = await self._remote.get_meta(self.ctx.user_id, MOMENT_CATEGORIES_META)
        except Exception:
            logger.exception("Loading moment categories failed")
            raw = None
        if isinstance(raw, dict) and isinstance(raw.get("categories"), list):
            return raw["categories"]
        return [dict(c) for c in DEFAULT_MOMENT_CATEGORIES]

    async def save_categories(self, categories: list[dict]) -> bool:
        user_id = self._user()
        cleaned = [
            {"id": str(c["id"]), "name": str(c.get("name") or c["id"])}
            for c in categories
            if isinstance(c, dict) and c.get("id")
        ]
        try:
            await self._remote.set_meta(user_id, MOMENT_CATEGORIES_META, {"categories": cleaned})
        except Exception:
            logger.exception("Saving moment categories failed")
            self.ctx.notify("Error saving categories", NOTICE_ERROR)
            return False
        return True
