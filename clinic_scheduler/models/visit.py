from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Time, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base
from .appointment import Appointment
from .user import User

class PatientVisit(Base):
    __tablename__ = "patient_visits"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, unique=True)

    visit_date = Column(Date, nullable=False)
    visit_time = Column(Time, nullable=False)
    status = Column(String(50), nullable=False, default="completed")

    # Clinical record
    symptoms = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    prescription = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    follow_up_date = Column(Date, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    appointment = relationship(Appointment)
    doctor = relationship(User, foreign_keys=[doctor_id])

    @property
    def doctor_name(self):
        return self.doctor.name if self.doctor else None

    def __repr__(self):
        return f"<PatientVisit(id={self.id}, appointment_id={self.appointment_id})>"
