from datetime import date
from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.security import UserRole
from ..models.appointment import Appointment
from ..models.user import User
from .activity_service import ActivityLog

logger = logging.getLogger(__name__)

class AdminService:
    def __init__(self, db: Session):
        self.db = db

    def system_stats(self, today: Optional[date] = None, activity_limit: int = 10) -> dict:
        """User counts by role, appointments booked for today and the latest activity."""
        today = today or date.today()

        by_role = dict(
            self.db.query(User.role, func.count(User.id)).group_by(User.role).all()
        )
        todays_appointments = self.db.query(func.count(Appointment.id)).filter(
            Appointment.date == today
        ).scalar()

        logger.debug(f"System stats computed for {today}")
        return {
            "users": {
                "total": sum(by_role.values()),
                "patients": by_role.get(UserRole.PATIENT, 0),
                "doctors": by_role.get(UserRole.DOCTOR, 0),
                "admins": by_role.get(UserRole.ADMIN, 0),
            },
            "today_appointments": todays_appointments,
            "recent_activities": ActivityLog(self.db).recent(activity_limit),
        }
