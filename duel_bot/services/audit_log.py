"""
Audit log service: records admin and automatic actions and pages through them.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func

from duel_bot.constants import PaginationConstants
from duel_bot.database.models import AuditLog
from duel_bot.services.base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class AuditLogPage:
    entries: List[AuditLog]
    page: int
    total_pages: int
    total_entries: int

    @staticmethod
    def details_of(entry: AuditLog) -> Dict[str, Any]:
        if not entry.details:
            return {}
        try:
            return json.loads(entry.details)
        except json.JSONDecodeError:
            return {'raw': entry.details}


class AuditLogService(BaseService):
    async def record(self, guild_id: int, action_type: str, admin_id: Optional[int] = None,
                     **details) -> None:
        async with self.get_session() as session:
            session.add(AuditLog(
                guild_id=guild_id,
                action_type=action_type,
                admin_id=admin_id,
                details=json.dumps(details)
            ))
        logger.debug(f"Audit {action_type} for guild {guild_id} by {admin_id}: {details}")

    async def get_page(self, guild_id: int, action_type: Optional[str] = None, page: int = 1,
                       page_size: int = PaginationConstants.LOGS_PER_PAGE) -> AuditLogPage:
        """Newest first. Pages are 1-based and clamped to the available range."""
        async with self.get_session() as session:
            count_query = select(func.count(AuditLog.id)).where(AuditLog.guild_id == guild_id)
            query = select(AuditLog).where(AuditLog.guild_id == guild_id)
            if action_type:
                count_query = count_query.where(AuditLog.action_type == action_type)
                query = query.where(AuditLog.action_type == action_type)

            total = await session.scalar(count_query) or 0
            total_pages = max(1, (total + page_size - 1) // page_size)
            page = min(max(1, page), total_pages)

            result = await session.execute(
                query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
                .limit(page_size)
                .offset((page - 1) * page_size)
            )
            return AuditLogPage(
                entries=list(result.scalars().all()),
                page=page,
                total_pages=total_pages,
                total_entries=total
            )
