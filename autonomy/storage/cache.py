"""Plan cache -- key/value persistence so the current plan survives restarts."""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from autonomy.planning.schemas import Plan
from autonomy.storage.database import Database
from autonomy.storage.models import CacheEntry

logger = logging.getLogger(__name__)

CURRENT_PLAN_KEY = "current_plan"


class PlanCache:
    """Get/set JSON values by key, scoped to one agent."""

    def __init__(self, database: Database, agent_id: str) -> None:
        self._db = database
        self._agent_id = agent_id

    async def get(self, key: str) -> Any | None:
        async with self._db.session() as session:
            entry = await session.get(CacheEntry, (self._agent_id, key))
            return entry.value if entry is not None else None

    async def set(self, key: str, value: Any) -> None:
        # UPSERT: INSERT ... ON CONFLICT (agent_id, key) DO UPDATE
        insert = pg_insert if self._db.engine.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(CacheEntry).values(
            agent_id=self._agent_id,
            key=key,
            value=value,
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CacheEntry.agent_id, CacheEntry.key],
            set_={"value": stmt.excluded["value"], "updated_at": stmt.excluded["updated_at"]},
        )
        async with self._db.session() as session:
            await session.execute(stmt)
            await session.commit()

    async def delete(self, key: str) -> bool:
        async with self._db.session() as session:
            entry = await session.get(CacheEntry, (self._agent_id, key))
            if entry is None:
                return False
            await session.delete(entry)
            await session.commit()
            return True

    async def load_plan(self) -> Plan | None:
        """Return the persisted current plan, or None if absent or unreadable."""
        raw = await self.get(CURRENT_PLAN_KEY)
        if raw is None:
            return None
        try:
            return Plan.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cached plan for %s", self._agent_id)
            return None

    async def save_plan(self, plan: Plan | None) -> None:
        """Persist plan as the current plan; None clears the entry."""
        if plan is None:
            await self.delete(CURRENT_PLAN_KEY)
            return
        await self.set(CURRENT_PLAN_KEY, plan.model_dump(mode="json"))
        logger.debug("Persisted plan %s", plan.id)
