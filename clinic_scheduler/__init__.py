"""
Clinic Scheduler

A FastAPI service for doctor availability and appointment scheduling:
weekly schedules, leave, slot generation and conflict-free booking.
"""

__version__ = "1.0.0"
