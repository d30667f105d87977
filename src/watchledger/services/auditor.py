"""Best-effort security audit trail.

Writes happen in their own transaction after the business operation has
finished, so a degraded audit store can never roll back or fail the caller.
"""

import logging
from typing import Any, Mapping, Optional

from watchledger.exceptions import AuditDegraded
from watchledger.ledger.database import Database
from watchledger.ledger.models import ActivityLog, ActivityStatus
from watchledger.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)

# Operational channel for degraded auditing
ops_logger = logging.getLogger("watchledger.ops")


class ActivityAuditor:
    """Append-only activity log writer."""

    def __init__(self, db: Database):
        self.db = db
        self.degraded_count = 0

    async def record(
        self,
        action: str,
        user_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        details: Optional[Mapping[str, Any]] = None,
        status: ActivityStatus = ActivityStatus.SUCCESS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[ActivityLog]:
        """Append one entry. Never raises; returns None if the write failed."""
        try:
            async with self.db.session() as session:
                repo = LedgerRepository(session)
                return await repo.add_activity_log(
                    action=action,
                    user_id=user_id,
                    resource_type=resource_type,
                    resource_id=str(resource_id) if resource_id is not None else None,
                    details=details,
                    status=status,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except Exception as e:
            self.degraded_count += 1
            degraded = AuditDegraded(f"Failed to record '{action}' for user {user_id}: {e}")
            ops_logger.error(str(degraded), exc_info=e)
            return None

    async def list_for_user(self, user_id: int, limit: int = 50) -> list[ActivityLog]:
        """Get a user's audit trail, newest first."""
        async with self.db.session() as session:
            return await LedgerRepository(session).get_user_activity_logs(user_id, limit)

    async def list_for_resource(self, resource_type: str, resource_id: Any) -> list[ActivityLog]:
        """Get every entry about one resource, oldest first."""
        async with self.db.session() as session:
            return await LedgerRepository(session).get_activity_logs_by_resource(
                resource_type, str(resource_id)
            )
