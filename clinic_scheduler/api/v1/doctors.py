from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...core.security import UserRole
from ...api.deps import (
    get_current_user, get_admin_user, get_doctor_user, civil_date, ensure_self_or_admin
)
from ...services.schedule_service import ScheduleService, get_doctor_or_404
from ...services.booking_ledger import BookingLedger
from ...schemas.appointment import AppointmentResponse
from ...schemas.schedule import (
    WeeklyScheduleRequest, ScheduleSlotRequest, ScheduleEntryResponse,
    LeaveRequestCreate, LeaveReview, LeaveResponse, DoctorResponse
)
from ...models.user import User

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.get("", response_model=List[DoctorResponse])
async def list_doctors(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List active doctors."""
    return db.query(User).filter(
        User.role == UserRole.DOCTOR,
        User.is_active.is_(True)
    ).order_by(User.name).all()

@router.post("/schedule")
async def set_weekly_schedule(
    data: WeeklyScheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    """Replace the doctor's weekly schedule."""
    ensure_self_or_admin(current_user, data.doctor_id)

    service = ScheduleService(db)
    entries = service.set_weekly_schedule(data.doctor_id, data.schedules)

    return {
        "message": "Schedule updated successfully",
        "schedules": [ScheduleEntryResponse.model_validate(entry) for entry in entries]
    }

@router.get("/{doctor_id}/schedule", response_model=List[ScheduleEntryResponse])
async def get_weekly_schedule(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    get_doctor_or_404(db, doctor_id)
    return ScheduleService(db).get_weekly_schedule(doctor_id)

@router.post("/schedule-slots", response_model=ScheduleEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_schedule_slot(
    data: ScheduleSlotRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    ensure_self_or_admin(current_user, data.doctor_id)
    return ScheduleService(db).add_schedule_entry(data.doctor_id, data)

@router.put("/schedule-slots/{entry_id}", response_model=ScheduleEntryResponse)
async def update_schedule_slot(
    entry_id: int,
    data: ScheduleSlotRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    ensure_self_or_admin(current_user, data.doctor_id)
    return ScheduleService(db).update_schedule_entry(entry_id, data.doctor_id, data)

@router.delete("/schedule-slots/{entry_id}")
async def delete_schedule_slot(
    entry_id: int,
    doctor_id: int = Query(..., alias="doctorId"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    ensure_self_or_admin(current_user, doctor_id)
    ScheduleService(db).delete_schedule_entry(entry_id, doctor_id)
    return {"message": "Schedule slot deleted successfully"}

@router.post("/leave", response_model=LeaveResponse, status_code=status.HTTP_201_CREATED)
async def request_leave(
    data: LeaveRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    """Submit a leave request; refused while appointments fall inside it."""
    ensure_self_or_admin(current_user, data.doctor_id)

    return ScheduleService(db).request_leave(
        data.doctor_id,
        data.start_date,
        data.end_date,
        leave_type=data.leave_type,
        reason=data.reason
    )

@router.get("/{doctor_id}/leaves", response_model=List[LeaveResponse])
async def list_leaves(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    ensure_self_or_admin(current_user, doctor_id)
    return ScheduleService(db).list_leaves(doctor_id)

@router.put("/leave/{leave_id}/status", response_model=LeaveResponse)
async def review_leave(
    leave_id: int,
    data: LeaveReview,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Approve or reject a pending leave (admin only)."""
    return ScheduleService(db).review_leave(leave_id, data.status, reviewer_id=admin.id)

@router.get("/{doctor_id}/daily-schedule", response_model=List[AppointmentResponse])
async def daily_schedule(
    doctor_id: int,
    date: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user)
):
    """All of the doctor's appointments on a date, in time order."""
    ensure_self_or_admin(current_user, doctor_id)
    get_doctor_or_404(db, doctor_id)
    return BookingLedger(db).list_for_day(doctor_id, civil_date(date))
