from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...core.security import UserRole
from ...api.deps import (
    get_current_user, get_doctor_user, get_notifier, ensure_self_or_admin, ensure_can_set_status
)
from ...services.appointment_service import AppointmentService
from ...services.notification_service import BackgroundNotificationDispatcher
from ...schemas.appointment import VisitCreate, VisitResponse
from ...models.appointment import AppointmentStatus
from ...models.user import User

router = APIRouter(tags=["Visits"])

@router.post("/visits", response_model=VisitResponse, status_code=status.HTTP_201_CREATED)
async def record_visit(
    data: VisitCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_doctor_user),
    notifier: BackgroundNotificationDispatcher = Depends(get_notifier)
):
    """Record the visit for a confirmed appointment and mark it completed."""
    service = AppointmentService(db, notifier)
    ensure_can_set_status(
        current_user, service.get_appointment(data.appointment_id), AppointmentStatus.COMPLETED.value
    )
    return service.complete_appointment(data.appointment_id, data)

@router.get("/patients/{patient_id}/visits", response_model=List[VisitResponse])
async def list_patient_visits(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Visit history for a patient, newest first."""
    if current_user.role != UserRole.DOCTOR:
        ensure_self_or_admin(current_user, patient_id)
    return AppointmentService(db).list_visits(patient_id)
