from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...core.security import UserRole
from ...api.deps import (
    get_current_user, get_notifier, booking_rate_limit, civil_date,
    ensure_self_or_admin, ensure_appointment_party, ensure_can_set_status
)
from ...services.appointment_service import AppointmentService
from ...services.availability_service import AvailabilityResolver
from ...services.notification_service import BackgroundNotificationDispatcher
from ...schemas.appointment import (
    AppointmentCreate, AppointmentReschedule, AppointmentStatusUpdate,
    AppointmentResponse, AvailableSlotsResponse
)
from ...models.user import User

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    user_id: Optional[int] = Query(None, alias="userId"),
    user_type: Optional[str] = Query(None, alias="userType"),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List appointments for a patient or doctor, optionally by status and date range."""
    if current_user.role != UserRole.ADMIN:
        # Non-admins only ever see their own side of the ledger
        if user_id is not None:
            ensure_self_or_admin(current_user, user_id)
        user_id = current_user.id
        user_type = current_user.role.value

    service = AppointmentService(db)
    return service.list_appointments(
        user_id=user_id,
        user_type=user_type,
        status=status_filter,
        start_date=civil_date(start_date) if start_date else None,
        end_date=civil_date(end_date) if end_date else None
    )

@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def available_slots(
    doctor_id: int = Query(..., alias="doctorId"),
    date: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Bookable slots for a doctor on a date, each marked available or taken."""
    resolver = AvailabilityResolver(db)
    result = resolver.get_available_slots(doctor_id, civil_date(date))
    return AvailableSlotsResponse.model_validate(result)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: BackgroundNotificationDispatcher = Depends(get_notifier),
    _: None = Depends(booking_rate_limit)
):
    """Book an appointment on a free slot."""
    ensure_self_or_admin(current_user, data.patient_id)

    service = AppointmentService(db, notifier)
    return service.create_appointment(
        patient_id=data.patient_id,
        doctor_id=data.doctor_id,
        day=data.date,
        at=data.time,
        duration_minutes=data.duration_minutes,
        type=data.type,
        notes=data.notes
    )

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    service = AppointmentService(db)
    appointment = service.get_appointment(appointment_id)
    ensure_appointment_party(current_user, appointment)
    return appointment

@router.put("/{appointment_id}")
async def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: BackgroundNotificationDispatcher = Depends(get_notifier)
):
    """Move an appointment to another slot."""
    service = AppointmentService(db, notifier)
    ensure_appointment_party(current_user, service.get_appointment(appointment_id))

    appointment = service.reschedule_appointment(
        appointment_id,
        day=data.date,
        at=data.time,
        doctor_id=data.doctor_id,
        rescheduled_by=current_user.role
    )

    return {
        "message": "Appointment rescheduled successfully",
        "appointment": AppointmentResponse.model_validate(appointment)
    }

@router.delete("/{appointment_id}")
async def cancel_appointment(
    appointment_id: int,
    reason: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: BackgroundNotificationDispatcher = Depends(get_notifier)
):
    """Cancel an appointment and free its slot."""
    service = AppointmentService(db, notifier)
    ensure_appointment_party(current_user, service.get_appointment(appointment_id))

    appointment = service.cancel_appointment(appointment_id, reason=reason)

    return {
        "message": "Appointment cancelled successfully",
        "appointment": AppointmentResponse.model_validate(appointment)
    }

@router.put("/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: BackgroundNotificationDispatcher = Depends(get_notifier)
):
    """Confirm, reject, cancel or complete an appointment."""
    service = AppointmentService(db, notifier)
    ensure_can_set_status(current_user, service.get_appointment(appointment_id), data.status)

    appointment = service.update_status(appointment_id, data.status)

    return {
        "message": "Appointment status updated successfully",
        "appointment": AppointmentResponse.model_validate(appointment)
    }
