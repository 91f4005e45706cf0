from datetime import date, datetime, time
from typing import List, Optional

from pydantic import AliasChoices, Field

from ..models.appointment import AppointmentStatus
from .common import CamelModel, CivilDate, CivilTime, OptionalCivilDate

class AppointmentCreate(CamelModel):
    patient_id: int
    doctor_id: int
    date: CivilDate
    time: CivilTime
    duration_minutes: Optional[int] = Field(
        None,
        gt=0,
        validation_alias=AliasChoices("duration", "durationMinutes", "duration_minutes"),
    )
    type: Optional[str] = None
    notes: Optional[str] = None

class AppointmentReschedule(CamelModel):
    date: CivilDate
    time: CivilTime
    doctor_id: Optional[int] = None

class AppointmentStatusUpdate(CamelModel):
    # Plain string: the lifecycle manager owns the allow-list
    status: str

class AppointmentResponse(CamelModel):
    id: int
    patient_id: int
    doctor_id: int
    date: date
    time: time
    duration_minutes: int
    type: Optional[str] = None
    status: AppointmentStatus
    notes: Optional[str] = None
    reschedule_count: int = 0
    cancelled_reason: Optional[str] = None
    patient_name: Optional[str] = None
    doctor_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class SlotResponse(CamelModel):
    time: str
    available: bool

class AvailableSlotsResponse(CamelModel):
    doctor_id: int
    date: date
    slots: List[SlotResponse]
    reason: Optional[str] = None
    message: Optional[str] = None

class VisitCreate(CamelModel):
    appointment_id: int
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: OptionalCivilDate = None

class VisitResponse(CamelModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_id: int
    visit_date: date
    visit_time: time
    status: str
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[date] = None
    doctor_name: Optional[str] = None
    created_at: Optional[datetime] = None

class NotificationResponse(CamelModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    related_id: Optional[int] = None
    is_read: bool
    created_at: Optional[datetime] = None
