from datetime import date, datetime, time
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator

from ..models.schedule import LeaveStatus
from .common import CamelModel, CivilDate, CivilTime, OptionalCivilTime

class ScheduleEntry(CamelModel):
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: CivilTime
    end_time: CivilTime
    break_start: OptionalCivilTime = None
    break_end: OptionalCivilTime = None
    max_patients_per_hour: int = Field(
        4,
        validation_alias=AliasChoices("maxPatientsPerHour", "maxPatients", "max_patients_per_hour"),
    )
    is_available: bool = True

    @field_validator("max_patients_per_hour", mode="before")
    @classmethod
    def default_capacity(cls, value):
        # Older clients send null or 0 for "use the default"
        return value or 4

    @field_validator("max_patients_per_hour")
    @classmethod
    def capacity_divides_hour(cls, value: int) -> int:
        if value < 1 or value > 60 or 60 % value:
            raise ValueError("maxPatientsPerHour must be a divisor of 60")
        return value

class WeeklyScheduleRequest(CamelModel):
    doctor_id: int
    schedules: List[ScheduleEntry]

class ScheduleSlotRequest(ScheduleEntry):
    doctor_id: int

class ScheduleEntryResponse(CamelModel):
    id: int
    doctor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    max_patients_per_hour: int
    is_available: bool

class LeaveRequestCreate(CamelModel):
    doctor_id: int
    start_date: CivilDate
    end_date: CivilDate
    leave_type: Optional[str] = None
    reason: Optional[str] = None

class LeaveReview(CamelModel):
    status: str

class LeaveResponse(CamelModel):
    id: int
    doctor_id: int
    start_date: date
    end_date: date
    leave_type: Optional[str] = None
    reason: Optional[str] = None
    status: LeaveStatus
    reviewed_by: Optional[int] = None
    created_at: Optional[datetime] = None

class DoctorResponse(CamelModel):
    id: int
    name: str
    email: str
