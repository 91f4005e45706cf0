from dataclasses import dataclass, field
from datetime import date, time
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import SlotUnavailableError
from ..utils.dates import format_time
from .booking_ledger import BookingLedger
from .schedule_service import get_doctor_or_404
from .slot_generator import NOT_WORKING, ON_LEAVE, SlotGenerator

logger = logging.getLogger(__name__)

FULLY_BOOKED = "fully_booked"

REASON_MESSAGES = {
    NOT_WORKING: "Doctor does not work on this day",
    ON_LEAVE: "Doctor is on leave on this day",
    FULLY_BOOKED: "All slots are booked for this day",
}

@dataclass
class Slot:
    time: str
    available: bool

@dataclass
class AvailabilityResult:
    doctor_id: int
    date: date
    slots: List[Slot] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason)

class AvailabilityResolver:
    def __init__(self, db: Session):
        self.db = db
        self.generator = SlotGenerator(db)
        self.ledger = BookingLedger(db)

    def get_available_slots(self, doctor_id: int, day: date) -> AvailabilityResult:
        """Candidate slots for the day, each marked free or taken."""
        get_doctor_or_404(self.db, doctor_id)

        plan = self.generator.build_day_plan(doctor_id, day)
        if plan.closed_reason:
            return AvailabilityResult(doctor_id=doctor_id, date=day, reason=plan.closed_reason)

        occupied = self.ledger.find_occupied(doctor_id, day)
        slots = [Slot(time=format_time(t), available=t not in occupied) for t in plan.times]

        reason = None
        if not any(slot.available for slot in slots):
            reason = FULLY_BOOKED

        return AvailabilityResult(doctor_id=doctor_id, date=day, slots=slots, reason=reason)

    def check_slot(
        self,
        doctor_id: int,
        day: date,
        at: time,
        exclude_id: Optional[int] = None,
    ) -> None:
        """Raise SlotUnavailableError unless ``at`` can be booked right now."""
        if settings.ENFORCE_WORKING_HOURS:
            plan = self.generator.build_day_plan(doctor_id, day)
            if at not in plan.times:
                logger.warning(
                    f"Booking outside working slots for doctor {doctor_id} on {day} at {at} "
                    f"({plan.closed_reason or 'not a slot start'})"
                )
                raise SlotUnavailableError()

        if not self.ledger.is_slot_free(doctor_id, day, at, exclude_id=exclude_id):
            logger.warning(f"Slot {day} {at} already booked for doctor {doctor_id}")
            raise SlotUnavailableError()
