from datetime import datetime
from typing import List, Optional

from .common import CamelModel

class UserCounts(CamelModel):
    total: int
    patients: int
    doctors: int
    admins: int

class ActivityResponse(CamelModel):
    id: int
    type: str
    message: str
    related_id: Optional[int] = None
    created_at: Optional[datetime] = None

class SystemStatsResponse(CamelModel):
    users: UserCounts
    today_appointments: int
    recent_activities: List[ActivityResponse]
