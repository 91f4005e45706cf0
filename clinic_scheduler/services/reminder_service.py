import asyncio
import logging
from datetime import date
from typing import Callable, List, Optional

import redis
from sqlalchemy.orm import Session, joinedload

from ..core.database import SessionLocal, get_redis
from ..models.appointment import Appointment, AppointmentStatus
from .notification_service import APPOINTMENT_REMINDER, NotificationService
from ..utils.dates import tomorrow

logger = logging.getLogger(__name__)

REMINDER_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
)

# Long enough to cover the day before and the day of the appointment
REMINDER_KEY_TTL = 2 * 24 * 60 * 60

class ReminderService:
    """Reminds patients of tomorrow's appointments, once per appointment and date."""

    def __init__(self, db: Session, redis_client):
        self.db = db
        self.redis = redis_client

    def due_appointments(self, day: date) -> List[Appointment]:
        return self.db.query(Appointment).options(
            joinedload(Appointment.patient), joinedload(Appointment.doctor)
        ).filter(
            Appointment.date == day,
            Appointment.status.in_(REMINDER_STATUSES)
        ).order_by(Appointment.time).all()

    def send_reminders(self, day: Optional[date] = None) -> int:
        day = day or tomorrow()
        notifications = NotificationService(self.db)
        sent = 0

        for appointment in self.due_appointments(day):
            key = self._key(appointment)
            if not self._claim(key):
                continue
            try:
                notifications.record_appointment_event(
                    APPOINTMENT_REMINDER, appointment, recipients=[appointment.patient_id]
                )
                sent += 1
            except Exception as e:
                logger.error(f"Failed to send reminder for appointment {appointment.id}: {e}")
                # Let the next run retry it
                self._release(key)

        logger.info(f"Sent {sent} appointment reminder(s) for {day}")
        return sent

    @staticmethod
    def _key(appointment: Appointment) -> str:
        return f"reminder_sent:{appointment.id}:{appointment.date.isoformat()}"

    def _claim(self, key: str) -> bool:
        try:
            return bool(self.redis.set(key, 1, nx=True, ex=REMINDER_KEY_TTL))
        except redis.RedisError as e:
            # Without Redis a duplicate reminder beats a missed one
            logger.warning(f"Reminder de-duplication unavailable: {e}")
            return True

    def _release(self, key: str) -> None:
        try:
            self.redis.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Could not release reminder claim {key}: {e}")

def send_due_reminders(
    session_factory: Callable[[], Session] = SessionLocal,
    redis_client=None,
) -> int:
    db = session_factory()
    try:
        return ReminderService(db, redis_client or get_redis()).send_reminders()
    finally:
        db.close()

async def run_reminder_loop(interval_seconds: int) -> None:
    """Periodic reminder scan; runs until cancelled on shutdown."""
    logger.info(f"Reminder loop started (every {interval_seconds}s)")
    while True:
        try:
            await asyncio.to_thread(send_due_reminders)
        except Exception as e:
            logger.error(f"Reminder run failed: {e}")
        await asyncio.sleep(interval_seconds)
