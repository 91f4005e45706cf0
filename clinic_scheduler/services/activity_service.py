from datetime import date, time
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from ..core.database import atomic
from ..models.activity import SystemActivity
from ..models.appointment import Appointment

logger = logging.getLogger(__name__)

def format_slot(day: date, at: time) -> str:
    return f"{day.isoformat()} at {at.strftime('%H:%M')}"

def describe_parties(appointment: Appointment) -> str:
    return f"{appointment.patient.name} with Dr. {appointment.doctor.name}"

class ActivityLog:
    def __init__(self, db: Session):
        self.db = db

    def record(self, type: str, message: str, related_id: Optional[int] = None) -> SystemActivity:
        activity = SystemActivity(type=type, message=message, related_id=related_id)
        with atomic(self.db):
            self.db.add(activity)
        logger.debug(f"Activity {type}: {message}")
        return activity

    def recent(self, limit: int = 10) -> List[SystemActivity]:
        """Latest entries first."""
        return self.db.query(SystemActivity).order_by(
            SystemActivity.created_at.desc(), SystemActivity.id.desc()
        ).limit(limit).all()
