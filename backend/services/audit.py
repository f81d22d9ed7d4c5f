import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.action_log import ActionLog
from db.database import async_session_maker
from schemas.logs import AuditEntryCreate

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Append-only trail of stock mutations.

    Entries are written in their own session after the mutation committed.
    The ledger is the source of truth, so a failed append is logged and
    dropped, never raised to the caller.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def append(self, entry: AuditEntryCreate) -> None:
        try:
            async with self._session_maker() as db:
                db.add(ActionLog(**entry.model_dump()))
                await db.commit()
        except Exception:
            logger.exception(
                "Failed to append audit entry (action=%s item=%s)", entry.action_type, entry.item_name
            )

    async def recent(self, limit: int = 100, action_type: Optional[str] = None) -> List[ActionLog]:
        async with self._session_maker() as db:
            stmt = select(ActionLog)
            if action_type:
                stmt = stmt.where(ActionLog.action_type == action_type)
            stmt = stmt.order_by(ActionLog.timestamp.desc(), ActionLog.id.desc()).limit(limit)
            res = await db.execute(stmt)
            return list(res.scalars().all())


audit_log = AuditLog(async_session_maker)


def get_audit_log() -> AuditLog:
    return audit_log
