from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from datetime import date, datetime, time
from typing import List, Optional
import logging

from ..core.config import settings
from ..core.database import atomic
from ..core.exceptions import ConflictError, NotFoundError, RescheduleLimitError, ValidationError
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.user import User
from ..models.visit import PatientVisit
from ..schemas.appointment import VisitCreate
from .activity_service import ActivityLog, describe_parties, format_slot
from .availability_service import AvailabilityResolver
from .booking_ledger import BookingLedger
from .notification_service import (
    APPOINTMENT_CANCELLED, APPOINTMENT_CREATED, APPOINTMENT_RESCHEDULED, status_event
)
from .schedule_service import get_doctor_or_404

logger = logging.getLogger(__name__)

S = AppointmentStatus

TRANSITIONS = {
    S.PENDING: {S.SCHEDULED, S.CONFIRMED, S.REJECTED, S.CANCELLED},
    S.SCHEDULED: {S.CONFIRMED, S.REJECTED, S.CANCELLED, S.RESCHEDULED},
    S.CONFIRMED: {S.COMPLETED, S.CANCELLED, S.RESCHEDULED},
    S.RESCHEDULED: {S.CONFIRMED, S.REJECTED, S.CANCELLED, S.RESCHEDULED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.REJECTED: set(),
}

# Targets accepted by the plain status update; rescheduling needs a new slot
STATUS_UPDATE_TARGETS = {
    S.PENDING, S.SCHEDULED, S.CONFIRMED, S.COMPLETED, S.CANCELLED, S.REJECTED
}

def parse_status(value: str) -> AppointmentStatus:
    try:
        status = AppointmentStatus(value)
    except ValueError:
        raise ValidationError("Invalid status")
    if status not in STATUS_UPDATE_TARGETS:
        raise ValidationError("Invalid status")
    return status

class AppointmentService:
    """Creates appointments and moves them through their lifecycle.

    ``notifier`` receives ``notify_appointment_event(event_type, appointment_id)``
    after each successful write; it must not block or raise.
    Every successful change is also written to the clinic activity log.
    """

    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier
        self.availability = AvailabilityResolver(db)
        self.ledger = BookingLedger(db)
        self.activity = ActivityLog(db)

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()

        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def list_appointments(
        self,
        user_id: Optional[int] = None,
        user_type: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Appointment]:
        query = self.db.query(Appointment).options(
            joinedload(Appointment.patient), joinedload(Appointment.doctor)
        )

        if user_type == UserRole.PATIENT.value:
            query = query.filter(Appointment.patient_id == user_id)
        elif user_type == UserRole.DOCTOR.value:
            query = query.filter(Appointment.doctor_id == user_id)

        if status:
            try:
                query = query.filter(Appointment.status == AppointmentStatus(status))
            except ValueError:
                raise ValidationError("Invalid status")

        if start_date:
            query = query.filter(Appointment.date >= start_date)
        if end_date:
            query = query.filter(Appointment.date <= end_date)

        return query.order_by(Appointment.date, Appointment.time).all()

    def create_appointment(
        self,
        patient_id: int,
        doctor_id: int,
        day: date,
        at: time,
        duration_minutes: Optional[int] = None,
        type: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        get_doctor_or_404(self.db, doctor_id)
        self._get_patient(patient_id)

        self.availability.check_slot(doctor_id, day, at)

        appointment = self.ledger.insert(Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            date=day,
            time=at,
            duration_minutes=duration_minutes or settings.DEFAULT_APPOINTMENT_DURATION,
            type=type,
            notes=notes,
            status=S.SCHEDULED
        ))

        logger.info(f"Appointment {appointment.id} booked: doctor {doctor_id} on {day} at {at}")
        self._record_activity(
            APPOINTMENT_CREATED, appointment,
            f"New appointment scheduled: {describe_parties(appointment)} on {format_slot(day, at)}"
        )
        self._notify(APPOINTMENT_CREATED, appointment.id)
        return appointment

    def reschedule_appointment(
        self,
        appointment_id: int,
        day: date,
        at: time,
        doctor_id: Optional[int] = None,
        rescheduled_by: Optional[UserRole] = None,
    ) -> Appointment:
        """Move the appointment to a new slot, keeping its id."""
        appointment = self.get_appointment(appointment_id)

        if doctor_id is not None and doctor_id != appointment.doctor_id:
            raise ValidationError("Appointment belongs to a different doctor")

        self._ensure_transition(appointment, S.RESCHEDULED)

        if (
            rescheduled_by == UserRole.PATIENT
            and appointment.reschedule_count >= settings.PATIENT_RESCHEDULE_LIMIT
        ):
            raise RescheduleLimitError(
                f"As a patient, you can only reschedule an appointment "
                f"{settings.PATIENT_RESCHEDULE_LIMIT} time(s)"
            )

        self.availability.check_slot(appointment.doctor_id, day, at, exclude_id=appointment.id)

        old_slot = (appointment.date, appointment.time)
        self.ledger.move(
            appointment, day, at,
            status=S.RESCHEDULED,
            reschedule_count=appointment.reschedule_count + 1
        )

        logger.info(
            f"Appointment {appointment.id} rescheduled from {old_slot[0]} {old_slot[1]} to {day} {at}"
        )
        self._record_activity(
            APPOINTMENT_RESCHEDULED, appointment,
            f"Appointment rescheduled: {describe_parties(appointment)} "
            f"from {format_slot(*old_slot)} to {format_slot(day, at)}"
        )
        self._notify(APPOINTMENT_RESCHEDULED, appointment.id)
        return appointment

    def cancel_appointment(self, appointment_id: int, reason: Optional[str] = None) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        self._ensure_transition(appointment, S.CANCELLED)

        with atomic(self.db):
            appointment.status = S.CANCELLED
            appointment.cancelled_reason = reason
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} cancelled")
        self._record_activity(
            APPOINTMENT_CANCELLED, appointment,
            f"Appointment cancelled: {describe_parties(appointment)} "
            f"on {format_slot(appointment.date, appointment.time)}"
        )
        self._notify(APPOINTMENT_CANCELLED, appointment.id)
        return appointment

    def update_status(self, appointment_id: int, status: str) -> Appointment:
        target = parse_status(status)

        if target == S.COMPLETED:
            self.complete_appointment(appointment_id)
            return self.get_appointment(appointment_id)

        appointment = self.get_appointment(appointment_id)
        # Terminal statuses have no outgoing transitions, so a freed slot is never re-claimed here
        self._ensure_transition(appointment, target)

        with atomic(self.db):
            appointment.status = target
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} is now {target.value}")
        self._record_activity(status_event(target.value), appointment, self._status_message(appointment))
        self._notify(status_event(target.value), appointment.id)
        return appointment

    def complete_appointment(
        self, appointment_id: int, visit_data: Optional[VisitCreate] = None
    ) -> PatientVisit:
        """Finish a confirmed appointment and record its visit."""
        appointment = self.get_appointment(appointment_id)

        if visit_data is not None:
            if visit_data.patient_id is not None and visit_data.patient_id != appointment.patient_id:
                raise ValidationError("Visit patient does not match the appointment")
            if visit_data.doctor_id is not None and visit_data.doctor_id != appointment.doctor_id:
                raise ValidationError("Visit doctor does not match the appointment")

        existing = self.db.query(PatientVisit).filter(
            PatientVisit.appointment_id == appointment.id
        ).first()
        if existing:
            raise ConflictError("A visit has already been recorded for this appointment")

        self._ensure_transition(appointment, S.COMPLETED)

        now = datetime.now()
        visit = PatientVisit(
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_id=appointment.id,
            visit_date=now.date(),
            visit_time=now.time().replace(second=0, microsecond=0),
            status=S.COMPLETED.value,
            symptoms=visit_data.symptoms if visit_data else None,
            diagnosis=visit_data.diagnosis if visit_data else None,
            prescription=visit_data.prescription if visit_data else None,
            notes=visit_data.notes if visit_data else None,
            follow_up_date=visit_data.follow_up_date if visit_data else None
        )

        try:
            with atomic(self.db):
                appointment.status = S.COMPLETED
                self.db.add(visit)
        except IntegrityError:
            raise ConflictError("A visit has already been recorded for this appointment")
        self.db.refresh(visit)

        logger.info(f"Appointment {appointment.id} completed, visit {visit.id} recorded")
        self._record_activity(
            status_event(S.COMPLETED.value), appointment, self._status_message(appointment)
        )
        self._notify(status_event(S.COMPLETED.value), appointment.id)
        return visit

    def list_visits(self, patient_id: int) -> List[PatientVisit]:
        return self.db.query(PatientVisit).options(
            joinedload(PatientVisit.doctor)
        ).filter(
            PatientVisit.patient_id == patient_id
        ).order_by(
            PatientVisit.visit_date.desc(), PatientVisit.visit_time.desc()
        ).all()

    def _get_patient(self, patient_id: int) -> User:
        patient = self.db.query(User).filter(
            User.id == patient_id,
            User.role == UserRole.PATIENT
        ).first()

        if not patient:
            raise NotFoundError(f"Patient {patient_id} not found")
        return patient

    @staticmethod
    def _ensure_transition(appointment: Appointment, target: AppointmentStatus) -> None:
        if target not in TRANSITIONS[appointment.status]:
            raise ValidationError(
                f"Cannot change appointment from {appointment.status.value} to {target.value}"
            )

    def _notify(self, event_type: str, appointment_id: int) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify_appointment_event(event_type, appointment_id)
        except Exception as e:
            logger.error(f"Could not queue {event_type} for appointment {appointment_id}: {e}")

    @staticmethod
    def _status_message(appointment: Appointment) -> str:
        return (
            f"Appointment {appointment.status.value}: {describe_parties(appointment)} "
            f"on {format_slot(appointment.date, appointment.time)}"
        )

    def _record_activity(self, event_type: str, appointment: Appointment, message: str) -> None:
        # The appointment write is already committed; a lost audit entry only gets logged
        try:
            self.activity.record(event_type, message, related_id=appointment.id)
        except Exception as e:
            logger.error(f"Could not record {event_type} activity for appointment {appointment.id}: {e}")
