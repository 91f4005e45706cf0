from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Time, Boolean, Text, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from ..core.database import Base

class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class DoctorSchedule(Base):
    """One weekly availability window; day_of_week 0 is Sunday."""

    __tablename__ = "doctor_schedules"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    break_start = Column(Time, nullable=True)
    break_end = Column(Time, nullable=True)
    max_patients_per_hour = Column(Integer, nullable=False, default=4)
    is_available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return f"<DoctorSchedule(id={self.id}, doctor_id={self.doctor_id}, day={self.day_of_week}, {self.start_time}-{self.end_time})>"

class DoctorLeave(Base):
    __tablename__ = "doctor_leaves"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    leave_type = Column(String(50), nullable=True)
    reason = Column(Text, nullable=True)
    status = Column(
        SQLEnum(LeaveStatus, values_callable=lambda statuses: [s.value for s in statuses], native_enum=False, length=20),
        nullable=False,
        default=LeaveStatus.PENDING,
    )
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DoctorLeave(id={self.id}, doctor_id={self.doctor_id}, {self.start_date}..{self.end_date}, status='{self.status}')>"
