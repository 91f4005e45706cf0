from sqlalchemy.orm import Session
from datetime import date
from typing import Iterable, List, Optional
import logging

from ..core.config import settings
from ..core.database import atomic
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.security import UserRole
from ..models.appointment import Appointment, OCCUPYING_STATUSES
from ..models.schedule import DoctorLeave, DoctorSchedule, LeaveStatus
from ..models.user import User
from ..schemas.schedule import ScheduleEntry

logger = logging.getLogger(__name__)

def get_doctor_or_404(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(
        User.id == doctor_id,
        User.role == UserRole.DOCTOR
    ).first()

    if not doctor:
        raise NotFoundError(f"Doctor {doctor_id} not found")
    return doctor

class ScheduleService:
    """Weekly availability windows and leave requests for doctors."""

    def __init__(self, db: Session):
        self.db = db

    def set_weekly_schedule(
        self, doctor_id: int, entries: Iterable[ScheduleEntry]
    ) -> List[DoctorSchedule]:
        """Replace the doctor's whole weekly schedule in one transaction."""
        get_doctor_or_404(self.db, doctor_id)

        with atomic(self.db):
            self.db.query(DoctorSchedule).filter(
                DoctorSchedule.doctor_id == doctor_id
            ).delete(synchronize_session=False)

            for entry in entries:
                self.db.add(self._row_from_entry(doctor_id, entry))

        logger.info(f"Weekly schedule replaced for doctor {doctor_id}")
        return self.get_weekly_schedule(doctor_id)

    def get_weekly_schedule(self, doctor_id: int) -> List[DoctorSchedule]:
        return self.db.query(DoctorSchedule).filter(
            DoctorSchedule.doctor_id == doctor_id
        ).order_by(
            DoctorSchedule.day_of_week, DoctorSchedule.start_time
        ).all()

    def add_schedule_entry(self, doctor_id: int, entry: ScheduleEntry) -> DoctorSchedule:
        get_doctor_or_404(self.db, doctor_id)

        row = self._row_from_entry(doctor_id, entry)
        with atomic(self.db):
            self.db.add(row)
        self.db.refresh(row)
        return row

    def update_schedule_entry(
        self, entry_id: int, doctor_id: int, entry: ScheduleEntry
    ) -> DoctorSchedule:
        row = self._get_entry(entry_id, doctor_id)

        with atomic(self.db):
            row.day_of_week = entry.day_of_week
            row.start_time = entry.start_time
            row.end_time = entry.end_time
            row.break_start = entry.break_start
            row.break_end = entry.break_end
            row.max_patients_per_hour = entry.max_patients_per_hour
            row.is_available = entry.is_available
        self.db.refresh(row)
        return row

    def delete_schedule_entry(self, entry_id: int, doctor_id: int) -> None:
        row = self._get_entry(entry_id, doctor_id)
        with atomic(self.db):
            self.db.delete(row)

    def request_leave(
        self,
        doctor_id: int,
        start_date: date,
        end_date: date,
        leave_type: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> DoctorLeave:
        """File a pending leave unless live appointments fall inside it."""
        get_doctor_or_404(self.db, doctor_id)

        if start_date > end_date:
            raise ValidationError("Leave start date must not be after its end date")

        conflicting = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date >= start_date,
            Appointment.date <= end_date,
            Appointment.status.in_(OCCUPYING_STATUSES)
        ).count()

        if conflicting:
            logger.warning(
                f"Leave for doctor {doctor_id} ({start_date}..{end_date}) "
                f"rejected: {conflicting} appointment(s) in range"
            )
            raise ConflictError(
                "Cannot request leave. You have scheduled appointments during this period."
            )

        leave = DoctorLeave(
            doctor_id=doctor_id,
            start_date=start_date,
            end_date=end_date,
            leave_type=leave_type,
            reason=reason,
            status=LeaveStatus.PENDING
        )
        with atomic(self.db):
            self.db.add(leave)
        self.db.refresh(leave)

        logger.info(f"Leave {leave.id} requested by doctor {doctor_id}")
        return leave

    def list_leaves(self, doctor_id: int) -> List[DoctorLeave]:
        return self.db.query(DoctorLeave).filter(
            DoctorLeave.doctor_id == doctor_id
        ).order_by(DoctorLeave.start_date).all()

    def review_leave(self, leave_id: int, status: str, reviewer_id: int) -> DoctorLeave:
        """Approve or reject a pending leave request."""
        try:
            decision = LeaveStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid leave status '{status}'")

        if decision == LeaveStatus.PENDING:
            raise ValidationError("A leave can only be approved or rejected")

        leave = self.db.query(DoctorLeave).filter(DoctorLeave.id == leave_id).first()
        if not leave:
            raise NotFoundError(f"Leave {leave_id} not found")

        if leave.status != LeaveStatus.PENDING:
            raise ConflictError(f"Leave {leave_id} has already been {leave.status.value}")

        with atomic(self.db):
            leave.status = decision
            leave.reviewed_by = reviewer_id
        self.db.refresh(leave)

        logger.info(f"Leave {leave_id} {decision.value} by user {reviewer_id}")
        return leave

    def find_blocking_leave(self, doctor_id: int, day: date) -> Optional[DoctorLeave]:
        """Return a leave that prevents bookings on ``day``, if any."""
        blocking = [LeaveStatus.APPROVED]
        if settings.PENDING_LEAVE_BLOCKS_BOOKING:
            blocking.append(LeaveStatus.PENDING)

        return self.db.query(DoctorLeave).filter(
            DoctorLeave.doctor_id == doctor_id,
            DoctorLeave.start_date <= day,
            DoctorLeave.end_date >= day,
            DoctorLeave.status.in_(blocking)
        ).first()

    def _get_entry(self, entry_id: int, doctor_id: int) -> DoctorSchedule:
        row = self.db.query(DoctorSchedule).filter(
            DoctorSchedule.id == entry_id,
            DoctorSchedule.doctor_id == doctor_id
        ).first()

        if not row:
            raise NotFoundError("Schedule slot not found")
        return row

    @staticmethod
    def _row_from_entry(doctor_id: int, entry: ScheduleEntry) -> DoctorSchedule:
        return DoctorSchedule(
            doctor_id=doctor_id,
            day_of_week=entry.day_of_week,
            start_time=entry.start_time,
            end_time=entry.end_time,
            break_start=entry.break_start,
            break_end=entry.break_end,
            max_patients_per_hour=entry.max_patients_per_hour,
            is_available=entry.is_available
        )
