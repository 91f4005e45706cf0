"""
Appointment notifications.

Delivery is best-effort: events are dispatched as background tasks after the
response is sent, every failure is logged and swallowed, and nothing is
retried. Each event stores one in-app notification for the patient and one
for the doctor and, when NOTIFICATION_WEBHOOK_URL is configured, is posted
to that URL for external delivery (email, SMS).
"""

import logging
from typing import Callable, List, Optional

import httpx
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import SessionLocal, atomic
from ..core.exceptions import NotFoundError
from ..models.appointment import Appointment
from ..models.notification import Notification

logger = logging.getLogger(__name__)

APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
APPOINTMENT_RESCHEDULED = "APPOINTMENT_RESCHEDULED"
APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"

TITLES = {
    APPOINTMENT_CREATED: "New Appointment",
    APPOINTMENT_RESCHEDULED: "Appointment Rescheduled",
    APPOINTMENT_CANCELLED: "Appointment Cancelled",
    "APPOINTMENT_CONFIRMED": "Appointment Confirmed",
    "APPOINTMENT_REJECTED": "Appointment Rejected",
    "APPOINTMENT_COMPLETED": "Appointment Completed",
    APPOINTMENT_REMINDER: "Appointment Reminder",
}

def status_event(status: str) -> str:
    return f"APPOINTMENT_{status.upper()}"

def get_notification_title(event_type: str) -> str:
    return TITLES.get(event_type, "Appointment Update")

def get_notification_message(event_type: str, appointment: Appointment, for_doctor: bool) -> str:
    when = f"{appointment.date.isoformat()} at {appointment.time.strftime('%H:%M')}"
    if for_doctor:
        party = f"patient {appointment.patient.name}"
    else:
        party = f"Dr. {appointment.doctor.name}"

    if event_type == APPOINTMENT_CREATED:
        return f"Appointment scheduled with {party} on {when}"
    if event_type == APPOINTMENT_RESCHEDULED:
        return f"Your appointment with {party} has been rescheduled to {when}"
    if event_type == APPOINTMENT_CANCELLED:
        return f"Your appointment with {party} on {when} has been cancelled"
    if event_type == APPOINTMENT_REMINDER:
        return f"Reminder: you have an appointment with {party} on {when}"
    return f"Your appointment with {party} on {when} is now {appointment.status.value}"

class NotificationService:
    def __init__(self, db: Session):
        self.db = db

    def record_appointment_event(
        self, event_type: str, appointment: Appointment, recipients: Optional[List[int]] = None
    ) -> List[Notification]:
        """Store the event for the patient and the doctor (or ``recipients``)."""
        if recipients is None:
            recipients = [appointment.patient_id, appointment.doctor_id]

        title = get_notification_title(event_type)
        created = []
        with atomic(self.db):
            for user_id in recipients:
                notification = Notification(
                    user_id=user_id,
                    type=event_type,
                    title=title,
                    message=get_notification_message(
                        event_type, appointment, for_doctor=user_id == appointment.doctor_id
                    ),
                    related_id=appointment.id,
                    is_read=False
                )
                self.db.add(notification)
                created.append(notification)
        return created

    def list_for_user(self, user_id: int, unread_only: bool = False) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()

        if not notification:
            raise NotFoundError("Notification not found")

        with atomic(self.db):
            notification.is_read = True
        self.db.refresh(notification)
        return notification

async def post_webhook(event_type: str, appointment: Appointment) -> None:
    payload = {
        "type": event_type,
        "appointmentId": appointment.id,
        "patientId": appointment.patient_id,
        "doctorId": appointment.doctor_id,
        "date": appointment.date.isoformat(),
        "time": appointment.time.strftime("%H:%M"),
        "status": appointment.status.value,
    }

    async with httpx.AsyncClient(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS) as client:
        response = await client.post(settings.NOTIFICATION_WEBHOOK_URL, json=payload)
        response.raise_for_status()

async def send_appointment_notification(
    event_type: str,
    appointment_id: int,
    session_factory: Callable[[], Session] = SessionLocal,
) -> bool:
    """Deliver one appointment event. Never raises; returns False on failure."""
    try:
        db = session_factory()
        try:
            appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if not appointment:
                logger.warning(f"Skipping {event_type}: appointment {appointment_id} not found")
                return False

            NotificationService(db).record_appointment_event(event_type, appointment)

            if settings.NOTIFICATION_WEBHOOK_URL:
                await post_webhook(event_type, appointment)
        finally:
            db.close()

        logger.info(f"{event_type} notification sent for appointment {appointment_id}")
        return True
    except Exception as e:
        logger.error(f"Failed to send {event_type} notification for appointment {appointment_id}: {e}")
        return False

class BackgroundNotificationDispatcher:
    """Queues appointment events on the request's background tasks."""

    def __init__(self, background_tasks: BackgroundTasks):
        self.background_tasks = background_tasks

    def notify_appointment_event(self, event_type: str, appointment_id: int) -> None:
        self.background_tasks.add_task(send_appointment_notification, event_type, appointment_id)
