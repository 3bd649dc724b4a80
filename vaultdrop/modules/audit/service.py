from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.modules.audit.models import AuditLog

def create_audit_log(
    db: AsyncSession,
    action: str,
    user_id: Optional[UUID] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Stage an audit row in the caller's unit of work.
    Does not commit: the row lands atomically with the transition it records.
    """
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id else None,
        metadata_json=metadata,
        ip_address=ip_address
    )
    db.add(log)
    return log

async def list_for_target(db: AsyncSession, target_type: str, target_id: Any) -> List[AuditLog]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.target_type == target_type, AuditLog.target_id == str(target_id))
        .order_by(AuditLog.created_at)
    )
    return result.scalars().all()
