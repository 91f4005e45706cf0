from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from datetime import date, time
from typing import List, Optional, Set
import logging

from ..core.database import atomic
from ..core.exceptions import PersistenceError, SlotUnavailableError
from ..models.appointment import Appointment, OCCUPYING_STATUSES

logger = logging.getLogger(__name__)

SLOT_INDEX_NAME = "uq_appointments_active_slot"

def _is_slot_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    # PostgreSQL names the index, SQLite lists the indexed columns
    return SLOT_INDEX_NAME in message or "appointments.doctor_id, appointments.date, appointments.time" in message

class BookingLedger:
    """Appointment rows seen as slot occupancy.

    Writes that claim a slot go through ``insert``/``move``: the partial
    unique index on (doctor_id, date, time) for live statuses makes the
    free-check and the write one atomic step, so a concurrent booking that
    raced past ``is_slot_free`` still fails here.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_occupied(self, doctor_id: int, day: date) -> Set[time]:
        rows = self.db.query(Appointment.time).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == day,
            Appointment.status.in_(OCCUPYING_STATUSES)
        ).all()
        return {row.time for row in rows}

    def is_slot_free(
        self,
        doctor_id: int,
        day: date,
        at: time,
        exclude_id: Optional[int] = None,
    ) -> bool:
        query = self.db.query(Appointment.id).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == day,
            Appointment.time == at,
            Appointment.status.in_(OCCUPYING_STATUSES)
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.first() is None

    def list_for_day(self, doctor_id: int, day: date) -> List[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == day
        ).order_by(Appointment.time).all()

    def insert(self, appointment: Appointment) -> Appointment:
        try:
            with atomic(self.db):
                self.db.add(appointment)
        except IntegrityError as e:
            self._raise_for_integrity(e, appointment.doctor_id, appointment.date, appointment.time)
        self.db.refresh(appointment)
        return appointment

    def move(self, appointment: Appointment, day: date, at: time, **changes) -> Appointment:
        """Point an existing row at another slot, applying ``changes`` with it.

        On failure the session is rolled back, so the row keeps its old slot.
        """
        try:
            with atomic(self.db):
                appointment.date = day
                appointment.time = at
                for name, value in changes.items():
                    setattr(appointment, name, value)
        except IntegrityError as e:
            self._raise_for_integrity(e, appointment.doctor_id, day, at)
        self.db.refresh(appointment)
        return appointment

    @staticmethod
    def _raise_for_integrity(error: IntegrityError, doctor_id: int, day: date, at: time):
        if _is_slot_violation(error):
            logger.warning(f"Slot {day} {at} for doctor {doctor_id} taken concurrently")
            raise SlotUnavailableError()
        logger.error(f"Integrity error while writing appointment: {str(error)}")
        raise PersistenceError() from error
