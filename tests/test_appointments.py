from datetime import time

import pytest

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.exceptions import SlotUnavailableError, ValidationError
from clinic_scheduler.core.security import UserRole
from clinic_scheduler.models.appointment import Appointment, AppointmentStatus
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.availability_service import AvailabilityResolver
from clinic_scheduler.services.booking_ledger import BookingLedger

class TestBooking:

    def test_create_appointment(self, client, test_db, doctor, patient, monday, monday_morning, book):
        """Test booking a free slot."""
        response = book(patient, doctor, monday, "10:00", type="consultation", notes="Headache")
        assert response.status_code == 201

        data = response.json()
        assert data["status"] == "scheduled"
        assert data["patientId"] == patient.id
        assert data["doctorId"] == doctor.id
        assert data["time"] == "10:00:00"
        assert data["durationMinutes"] == 30
        assert data["rescheduleCount"] == 0
        assert data["doctorName"] == "Grey"

        assert not BookingLedger(test_db).is_slot_free(doctor.id, monday, time(10, 0))

    def test_seconds_are_dropped(self, client, doctor, patient, monday, monday_morning, book):
        response = book(patient, doctor, monday, "10:00:00")
        assert response.status_code == 201
        assert response.json()["time"] == "10:00:00"

    def test_double_booking_rejected(self, client, doctor, patient, other_patient, monday, monday_morning, book):
        """Test a second booking on the same slot is refused."""
        assert book(patient, doctor, monday, "10:00").status_code == 201

        response = book(other_patient, doctor, monday, "10:00")
        assert response.status_code == 409
        assert response.json()["detail"] == "Time slot not available"

    def test_outside_working_hours_rejected(self, client, doctor, patient, monday, weekday, monday_morning, book):
        assert book(patient, doctor, monday, "13:00").status_code == 409
        assert book(patient, doctor, weekday(2), "10:00").status_code == 409

    def test_booking_on_leave_rejected(self, client, doctor, patient, monday, monday_morning, headers, book):
        client.post(
            "/api/v1/doctors/leave",
            json={"doctorId": doctor.id, "startDate": monday.isoformat(), "endDate": monday.isoformat()},
            headers=headers(doctor)
        )

        assert book(patient, doctor, monday, "10:00").status_code == 409

    @pytest.mark.parametrize("freeing", ["cancelled", "rejected"])
    def test_freed_slot_can_be_rebooked(self, client, doctor, patient, other_patient, monday, monday_morning, headers, book, freeing):
        appointment_id = book(patient, doctor, monday, "10:00").json()["id"]

        response = client.put(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": freeing},
            headers=headers(doctor)
        )
        assert response.status_code == 200
        assert response.json()["appointment"]["status"] == freeing

        assert book(other_patient, doctor, monday, "10:00").status_code == 201

    def test_concurrent_booking_loses_at_write(self, test_db, doctor, patient, other_patient, monday, monday_morning, monkeypatch):
        """Both requests pass the availability check; the store lets only one through."""
        monkeypatch.setattr(AvailabilityResolver, "check_slot", lambda self, *args, **kwargs: None)
        service = AppointmentService(test_db)

        first = service.create_appointment(patient.id, doctor.id, monday, time(10, 0))
        with pytest.raises(SlotUnavailableError):
            service.create_appointment(other_patient.id, doctor.id, monday, time(10, 0))

        live = test_db.query(Appointment).filter(
            Appointment.doctor_id == doctor.id, Appointment.date == monday
        ).all()
        assert [a.id for a in live] == [first.id]

    def test_patient_cannot_book_for_someone_else(self, client, doctor, patient, other_patient, monday, monday_morning, book):
        response = book(other_patient, doctor, monday, "10:00", as_user=patient)
        assert response.status_code == 403

    def test_unknown_patient(self, client, doctor, admin, monday, monday_morning, headers):
        response = client.post(
            "/api/v1/appointments",
            json={"patientId": 999, "doctorId": doctor.id, "date": monday.isoformat(), "time": "10:00"},
            headers=headers(admin)
        )
        assert response.status_code == 404

    def test_malformed_time(self, client, doctor, patient, monday, book):
        response = book(patient, doctor, monday, "ten o'clock")
        assert response.status_code == 422

    def test_invalid_token(self, client):
        response = client.get(
            "/api/v1/appointments", headers={"Authorization": "Bearer invalid_token"}
        )
        assert response.status_code == 401

    def test_booking_rate_limit(self, client, doctor, patient, monday, monday_morning, book, fake_redis, monkeypatch):
        monkeypatch.setattr(settings, "BOOKING_RATE_LIMIT_PER_HOUR", 1)

        assert book(patient, doctor, monday, "09:00").status_code == 201
        assert book(patient, doctor, monday, "10:00").status_code == 429

class TestListing:

    def test_list_own_appointments(self, client, doctor, patient, other_patient, monday, monday_morning, headers, book):
        """Test patients only see their own appointments, in time order."""
        book(patient, doctor, monday, "11:00")
        book(other_patient, doctor, monday, "10:00")
        book(patient, doctor, monday, "09:00")

        response = client.get("/api/v1/appointments", headers=headers(patient))
        assert response.status_code == 200
        assert [a["time"] for a in response.json()] == ["09:00:00", "11:00:00"]

        response = client.get("/api/v1/appointments", headers=headers(doctor))
        assert len(response.json()) == 3

    def test_filter_by_status(self, client, doctor, patient, monday, monday_morning, headers, book):
        first = book(patient, doctor, monday, "09:00").json()["id"]
        book(patient, doctor, monday, "10:00")
        client.delete(f"/api/v1/appointments/{first}", headers=headers(patient))

        response = client.get(
            "/api/v1/appointments", params={"status": "cancelled"}, headers=headers(patient)
        )
        assert [a["id"] for a in response.json()] == [first]

    def test_filter_by_unknown_status(self, client, patient, headers):
        response = client.get(
            "/api/v1/appointments", params={"status": "lost"}, headers=headers(patient)
        )
        assert response.status_code == 400

    def test_daily_schedule(self, client, doctor, patient, monday, monday_morning, headers, book):
        book(patient, doctor, monday, "11:00")
        book(patient, doctor, monday, "09:00")

        response = client.get(
            f"/api/v1/doctors/{doctor.id}/daily-schedule",
            params={"date": monday.isoformat()},
            headers=headers(doctor)
        )
        assert response.status_code == 200
        assert [a["time"] for a in response.json()] == ["09:00:00", "11:00:00"]

    def test_get_appointment_not_found(self, client, patient, headers):
        response = client.get("/api/v1/appointments/123", headers=headers(patient))
        assert response.status_code == 404
        assert response.json()["detail"] == "Appointment not found"

    def test_outsider_cannot_read_appointment(self, client, doctor, patient, other_patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = client.get(f"/api/v1/appointments/{appointment_id}", headers=headers(other_patient))
        assert response.status_code == 403

class TestReschedule:

    def _reschedule(self, client, appointment_id, day, at, user, headers):
        return client.put(
            f"/api/v1/appointments/{appointment_id}",
            json={"date": day.isoformat(), "time": at},
            headers=headers(user)
        )

    def test_reschedule_moves_slot(self, client, test_db, doctor, patient, monday, monday_morning, headers, book):
        """Test rescheduling keeps the id and frees the old slot."""
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = self._reschedule(client, appointment_id, monday, "11:00", patient, headers)
        assert response.status_code == 200

        data = response.json()["appointment"]
        assert data["id"] == appointment_id
        assert data["time"] == "11:00:00"
        assert data["status"] == "rescheduled"
        assert data["rescheduleCount"] == 1

        ledger = BookingLedger(test_db)
        assert ledger.is_slot_free(doctor.id, monday, time(9, 0))
        assert not ledger.is_slot_free(doctor.id, monday, time(11, 0))

    def test_reschedule_onto_taken_slot(self, client, test_db, doctor, patient, other_patient, monday, monday_morning, headers, book):
        """Test a failed reschedule leaves both appointments untouched."""
        mine = book(patient, doctor, monday, "09:00").json()["id"]
        theirs = book(other_patient, doctor, monday, "10:00").json()["id"]

        response = self._reschedule(client, mine, monday, "10:00", patient, headers)
        assert response.status_code == 409

        test_db.expire_all()
        mine_row = test_db.get(Appointment, mine)
        theirs_row = test_db.get(Appointment, theirs)
        assert (mine_row.time, mine_row.status) == (time(9, 0), AppointmentStatus.SCHEDULED)
        assert (theirs_row.time, theirs_row.status) == (time(10, 0), AppointmentStatus.SCHEDULED)
        assert mine_row.reschedule_count == 0

    def test_concurrent_reschedule_loses_at_write(self, test_db, doctor, patient, other_patient, monday, monday_morning, monkeypatch):
        service = AppointmentService(test_db)
        mine = service.create_appointment(patient.id, doctor.id, monday, time(9, 0))
        service.create_appointment(other_patient.id, doctor.id, monday, time(10, 0))

        monkeypatch.setattr(AvailabilityResolver, "check_slot", lambda self, *args, **kwargs: None)
        with pytest.raises(SlotUnavailableError):
            service.reschedule_appointment(mine.id, monday, time(10, 0))

        test_db.expire_all()
        assert test_db.get(Appointment, mine.id).time == time(9, 0)

    def test_patient_reschedule_limit(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        assert self._reschedule(client, appointment_id, monday, "10:00", patient, headers).status_code == 200
        response = self._reschedule(client, appointment_id, monday, "11:00", patient, headers)
        assert response.status_code == 403

        # The doctor is not bound by the patient limit
        assert self._reschedule(client, appointment_id, monday, "11:00", doctor, headers).status_code == 200

    def test_reschedule_to_other_doctor_rejected(self, client, doctor, patient, make_user, monday, monday_morning, headers, book):
        colleague = make_user(UserRole.DOCTOR, "House")
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = client.put(
            f"/api/v1/appointments/{appointment_id}",
            json={"date": monday.isoformat(), "time": "10:00", "doctorId": colleague.id},
            headers=headers(patient)
        )
        assert response.status_code == 400

    def test_cancelled_appointment_cannot_be_rescheduled(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]
        client.delete(f"/api/v1/appointments/{appointment_id}", headers=headers(patient))

        response = self._reschedule(client, appointment_id, monday, "10:00", patient, headers)
        assert response.status_code == 400

class TestStatus:

    def _set_status(self, client, appointment_id, value, user, headers):
        return client.put(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": value},
            headers=headers(user)
        )

    def test_confirm(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = self._set_status(client, appointment_id, "confirmed", doctor, headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Appointment status updated successfully"
        assert response.json()["appointment"]["status"] == "confirmed"

    @pytest.mark.parametrize("value", ["lost", "rescheduled", ""])
    def test_invalid_status_is_rejected_without_write(self, client, test_db, doctor, patient, monday, monday_morning, headers, book, value):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = self._set_status(client, appointment_id, value, doctor, headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid status"

        test_db.expire_all()
        assert test_db.get(Appointment, appointment_id).status == AppointmentStatus.SCHEDULED

    def test_terminal_status_cannot_change(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]
        self._set_status(client, appointment_id, "cancelled", patient, headers)

        response = self._set_status(client, appointment_id, "confirmed", doctor, headers)
        assert response.status_code == 400

    def test_patient_may_cancel_but_not_confirm(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        assert self._set_status(client, appointment_id, "confirmed", patient, headers).status_code == 403
        assert self._set_status(client, appointment_id, "cancelled", patient, headers).status_code == 200

    def test_cancel_with_reason(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = client.delete(
            f"/api/v1/appointments/{appointment_id}",
            params={"reason": "Feeling better"},
            headers=headers(patient)
        )
        assert response.status_code == 200
        data = response.json()["appointment"]
        assert data["status"] == "cancelled"
        assert data["cancelledReason"] == "Feeling better"

    def test_complete_requires_confirmation(self, test_db, doctor, patient, monday, monday_morning):
        service = AppointmentService(test_db)
        appointment = service.create_appointment(patient.id, doctor.id, monday, time(9, 0))

        with pytest.raises(ValidationError):
            service.update_status(appointment.id, "completed")

        service.update_status(appointment.id, "confirmed")
        completed = service.update_status(appointment.id, "completed")
        assert completed.status == AppointmentStatus.COMPLETED

class TestVisits:

    def test_record_visit(self, client, doctor, patient, monday, monday_morning, headers, book):
        """Test recording a visit completes the appointment and shows in history."""
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]
        client.put(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "confirmed"},
            headers=headers(doctor)
        )

        response = client.post(
            "/api/v1/visits",
            json={
                "appointmentId": appointment_id,
                "symptoms": "Cough",
                "diagnosis": "Common cold",
                "prescription": "Rest",
                "followUpDate": monday.isoformat()
            },
            headers=headers(doctor)
        )
        assert response.status_code == 201
        assert response.json()["diagnosis"] == "Common cold"
        assert response.json()["status"] == "completed"

        response = client.get(f"/api/v1/appointments/{appointment_id}", headers=headers(patient))
        assert response.json()["status"] == "completed"

        response = client.get(f"/api/v1/patients/{patient.id}/visits", headers=headers(patient))
        assert response.status_code == 200
        visits = response.json()
        assert len(visits) == 1
        assert visits[0]["doctorName"] == "Grey"

        response = client.post(
            "/api/v1/visits", json={"appointmentId": appointment_id}, headers=headers(doctor)
        )
        assert response.status_code == 409

    def test_patient_cannot_record_visit(self, client, doctor, patient, monday, monday_morning, headers, book):
        appointment_id = book(patient, doctor, monday, "09:00").json()["id"]

        response = client.post(
            "/api/v1/visits", json={"appointmentId": appointment_id}, headers=headers(patient)
        )
        assert response.status_code == 403

    def test_visit_history_is_private(self, client, patient, other_patient, headers):
        response = client.get(f"/api/v1/patients/{patient.id}/visits", headers=headers(other_patient))
        assert response.status_code == 403
