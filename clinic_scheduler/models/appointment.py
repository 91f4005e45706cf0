from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Time, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base
from .user import User

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"

# Statuses that release the slot they were booked on
FREEING_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED)

OCCUPYING_STATUSES = tuple(s for s in AppointmentStatus if s not in FREEING_STATUSES)

_ACTIVE_SLOT_PREDICATE = text("status NOT IN ('cancelled', 'rejected')")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # One live booking per doctor slot; cancelled/rejected rows do not count
        Index(
            "uq_appointments_active_slot",
            "doctor_id", "date", "time",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
        ),
        Index("ix_appointments_doctor_date", "doctor_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Appointment details
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    type = Column(String(50), nullable=True)
    status = Column(
        SQLEnum(AppointmentStatus, values_callable=lambda statuses: [s.value for s in statuses], native_enum=False, length=20),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    notes = Column(Text, nullable=True)

    # Tracking
    reschedule_count = Column(Integer, nullable=False, default=0)
    cancelled_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship(User, foreign_keys=[patient_id])
    doctor = relationship(User, foreign_keys=[doctor_id])

    @property
    def patient_name(self):
        return self.patient.name if self.patient else None

    @property
    def doctor_name(self):
        return self.doctor.name if self.doctor else None

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.date}', time='{self.time}')>"
