from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from core.auth import current_active_superuser
from db.users import User
from schemas.logs import ActionType, AuditEntryRead
from services.audit import AuditLog, get_audit_log

router = APIRouter()


@router.get("/", response_model=List[AuditEntryRead])
async def list_logs(
    action_type: Optional[ActionType] = Query(None, alias="actionType"),
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(current_active_superuser),
    audit: AuditLog = Depends(get_audit_log),
):
    """Most recent audit entries first (admin only)."""
    entries = await audit.recent(limit=limit, action_type=action_type)
    return [AuditEntryRead.model_validate(e) for e in entries]
