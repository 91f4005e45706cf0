from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...api.deps import get_admin_user
from ...services.admin_service import AdminService
from ...schemas.admin import SystemStatsResponse
from ...models.user import User

router = APIRouter(prefix="/admin", tags=["Admin"])

@router.get("/system-stats", response_model=SystemStatsResponse)
async def get_system_stats(
    activity_limit: int = Query(10, alias="activityLimit", ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Clinic dashboard: user counts, today's appointments and recent activity."""
    return AdminService(db).system_stats(activity_limit=activity_limit)
