"""Candidate slot generation from a doctor's weekly availability.

A slot is a start time inside a working window. The window
``[start_time, end_time)`` is cut into ``60 / max_patients_per_hour`` minute
pieces; a piece must finish by ``end_time`` and must not overlap the break
``[break_start, break_end)``.
"""
from dataclasses import dataclass, field
from datetime import date, time
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from ..models.schedule import DoctorSchedule
from ..utils.dates import day_of_week, minutes_of, time_from_minutes
from .schedule_service import ScheduleService

logger = logging.getLogger(__name__)

NOT_WORKING = "not_working"
ON_LEAVE = "on_leave"

@dataclass
class DayPlan:
    """Candidate slots for one day, or the reason there are none."""

    day: date
    times: List[time] = field(default_factory=list)
    closed_reason: Optional[str] = None

def partition_slots(
    start_time: time,
    end_time: time,
    break_start: Optional[time],
    break_end: Optional[time],
    max_patients_per_hour: int,
) -> List[time]:
    """Cut one availability window into ordered slot start times.

    Malformed windows (start at or after end, capacity that does not divide
    the hour) give no slots rather than an error. A break with a missing or
    inverted bound is ignored.
    """
    if not max_patients_per_hour or max_patients_per_hour < 1 or 60 % max_patients_per_hour:
        return []

    start = minutes_of(start_time)
    end = minutes_of(end_time)
    if start >= end:
        return []

    step = 60 // max_patients_per_hour

    pause = None
    if break_start is not None and break_end is not None:
        pause_start, pause_end = minutes_of(break_start), minutes_of(break_end)
        if pause_start < pause_end:
            pause = (pause_start, pause_end)

    slots = []
    current = start
    while current + step <= end:
        slot_end = current + step
        if pause is None or not (current < pause[1] and slot_end > pause[0]):
            slots.append(time_from_minutes(current))
        current = slot_end

    return slots

class SlotGenerator:
    def __init__(self, db: Session):
        self.db = db
        self.schedules = ScheduleService(db)

    def build_day_plan(self, doctor_id: int, day: date) -> DayPlan:
        weekday = day_of_week(day)
        windows = self.db.query(DoctorSchedule).filter(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.day_of_week == weekday,
            DoctorSchedule.is_available.is_(True)
        ).order_by(DoctorSchedule.start_time).all()

        if not windows:
            return DayPlan(day=day, closed_reason=NOT_WORKING)

        leave = self.schedules.find_blocking_leave(doctor_id, day)
        if leave:
            logger.debug(f"Doctor {doctor_id} on leave {leave.id} for {day}")
            return DayPlan(day=day, closed_reason=ON_LEAVE)

        # Overlapping windows are expanded independently, then merged
        times = set()
        for window in windows:
            times.update(partition_slots(
                window.start_time,
                window.end_time,
                window.break_start,
                window.break_end,
                window.max_patients_per_hour
            ))

        if not times:
            # Only malformed windows for this weekday
            return DayPlan(day=day, closed_reason=NOT_WORKING)

        return DayPlan(day=day, times=sorted(times))

    def generate_slots(self, doctor_id: int, day: date) -> List[time]:
        return self.build_day_plan(doctor_id, day).times
