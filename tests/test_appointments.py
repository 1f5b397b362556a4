from datetime import date, time, timedelta
from decimal import Decimal
from itertools import combinations

from conftest import NOW, TODAY, TOMORROW, book

from clinic.errors import ErrorKind
from clinic.models import AppointmentStatus, Category, TransactionReason
from clinic.timeutils import TimeRange


def test_booking_starts_scheduled(service, patient):
    result = book(service, patient, 10, 0, 30, notes="First visit")
    assert result.ok
    assert result.message == "Appointment scheduled successfully."
    appointment = result.data
    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.end_time == time(10, 30)
    assert appointment.notes == "First visit"
    assert appointment.created_at == NOW


def test_overlapping_booking_is_rejected(service, patient):
    assert book(service, patient, 10, 0, 30).ok
    result = book(service, patient, 10, 15, 30)
    assert not result.ok
    assert result.kind == ErrorKind.SCHEDULING_CONFLICT
    assert "10:00 AM" in result.message


def test_back_to_back_bookings_succeed(service, patient):
    assert book(service, patient, 10, 0, 30).ok
    assert book(service, patient, 10, 30, 30).ok


def test_calendar_is_shared_across_patients(service, patient):
    other = service.create_patient("Sam Rivera").data
    assert book(service, patient, 10, 0, 30).ok
    assert book(service, other, 10, 0, 30).kind == ErrorKind.SCHEDULING_CONFLICT


def test_duration_falls_back_to_service_then_default(service, patient):
    consult = service.create_service("Consultation", 45).data
    with_service = service.create_appointment(patient.id, TOMORROW, time(9, 0), service_id=consult.id)
    assert with_service.data.duration_minutes == 45

    explicit = service.create_appointment(patient.id, TOMORROW, time(10, 0), service_id=consult.id,
                                          duration_minutes=20)
    assert explicit.data.duration_minutes == 20

    plain = service.create_appointment(patient.id, TOMORROW, time(11, 0))
    assert plain.data.duration_minutes == 30


def test_past_date_is_rejected(service, patient):
    result = book(service, patient, 10, day=TODAY - timedelta(days=1))
    assert result.kind == ErrorKind.VALIDATION
    assert result.field == "appointment_date"


def test_same_day_requires_a_future_time(service, patient):
    earlier = book(service, patient, 8, 30, day=TODAY)
    assert earlier.kind == ErrorKind.VALIDATION
    assert earlier.field == "start_time"
    assert book(service, patient, 9, 0, day=TODAY).ok


def test_start_earlier_in_the_current_minute_is_past(service, clock, patient):
    clock.now = NOW.replace(second=45)
    result = book(service, patient, 9, 0, day=TODAY)
    assert result.kind == ErrorKind.VALIDATION
    assert result.field == "start_time"
    assert book(service, patient, 9, 1, day=TODAY).ok


def test_duration_bounds(service, patient):
    assert book(service, patient, 8, 0, 4).field == "duration_minutes"
    assert book(service, patient, 8, 0, 481).field == "duration_minutes"
    assert book(service, patient, 8, 0, 480).ok
    assert book(service, patient, 16, 0, 5).ok


def test_booking_must_end_the_same_day(service, patient):
    result = book(service, patient, 23, 0, 120)
    assert result.kind == ErrorKind.VALIDATION
    assert "same day" in result.message


def test_missing_references(service, patient):
    assert service.create_appointment(999, TOMORROW, time(10, 0)).kind == ErrorKind.NOT_FOUND
    missing_service = service.create_appointment(patient.id, TOMORROW, time(10, 0), service_id=999)
    assert missing_service.kind == ErrorKind.NOT_FOUND
    assert missing_service.message == "Service not found."


def test_inactive_service_cannot_be_booked(service, patient):
    retired = service.create_service("Retired", 30, Decimal("10"), is_active=False).data
    result = service.create_appointment(patient.id, TOMORROW, time(10, 0), service_id=retired.id)
    assert result.kind == ErrorKind.VALIDATION
    assert result.field == "service_id"


def test_reschedule_does_not_conflict_with_itself(service, patient):
    appointment = book(service, patient, 10, 0, 30).data
    result = service.update_appointment(appointment.id, {"start_time": time(10, 15)})
    assert result.ok
    assert result.data.start_time == time(10, 15)
    assert result.data.duration_minutes == 30


def test_reschedule_into_taken_slot_is_rejected_and_unchanged(service, patient):
    first = book(service, patient, 10, 0, 30).data
    second = book(service, patient, 11, 0, 30).data
    result = service.update_appointment(second.id, {"start_time": time(10, 20), "notes": "moved"})
    assert result.kind == ErrorKind.SCHEDULING_CONFLICT

    unchanged = service.get_appointment(second.id).data
    assert unchanged.start_time == time(11, 0)
    assert unchanged.notes is None
    assert service.get_appointment(first.id).data.start_time == time(10, 0)


def test_reschedule_to_another_day(service, patient):
    appointment = book(service, patient, 10, 0, 30).data
    later = TOMORROW + timedelta(days=1)
    result = service.update_appointment(appointment.id, {"appointment_date": later})
    assert result.ok
    assert service.appointments_on(TOMORROW).data == []
    assert [a.id for a in service.appointments_on(later).data] == [appointment.id]


def test_changing_service_takes_its_duration(service, patient):
    treatment = service.create_service("Treatment", 60).data
    appointment = book(service, patient, 10, 0, 30).data
    result = service.update_appointment(appointment.id, {"service_id": treatment.id})
    assert result.data.duration_minutes == 60


def test_update_missing_appointment(service):
    result = service.update_appointment(404, {"notes": "x"})
    assert result.kind == ErrorKind.NOT_FOUND
    assert result.message == "Appointment not found."


def test_update_rejects_unknown_fields(service, patient):
    appointment = book(service, patient, 10).data
    result = service.update_appointment(appointment.id, {"created_at": NOW})
    assert result.kind == ErrorKind.VALIDATION


def test_terminal_states_cannot_return_to_scheduled(service, patient):
    appointment = book(service, patient, 10).data
    service.complete_appointment(appointment.id, "Seen")
    result = service.update_appointment(appointment.id, {"status": AppointmentStatus.SCHEDULED})
    assert result.kind == ErrorKind.VALIDATION
    assert result.field == "status"


def test_cancel_frees_the_slot(service, patient):
    appointment = book(service, patient, 10).data
    cancelled = service.cancel_appointment(appointment.id, "Sick")
    assert cancelled.data.status == AppointmentStatus.CANCELLED
    assert cancelled.data.notes == "Sick"
    assert book(service, patient, 10).ok


def test_cancelling_twice_is_allowed(service, patient):
    appointment = book(service, patient, 10).data
    assert service.cancel_appointment(appointment.id, "Sick").ok
    again = service.cancel_appointment(appointment.id, "Still sick")
    assert again.ok
    assert again.data.notes == "Still sick"


def test_completed_appointment_cannot_be_cancelled(service, patient):
    appointment = book(service, patient, 10).data
    service.complete_appointment(appointment.id, "Seen")
    result = service.cancel_appointment(appointment.id, "Oops")
    assert result.kind == ErrorKind.VALIDATION
    assert "Completed -> Cancelled" in result.message


def test_complete_and_no_show(service, patient):
    first = book(service, patient, 10).data
    second = book(service, patient, 11).data
    completed = service.complete_appointment(first.id, "All good")
    assert completed.data.status == AppointmentStatus.COMPLETED
    assert completed.data.notes == "All good"
    assert service.mark_no_show(second.id).data.status == AppointmentStatus.NO_SHOW
    assert service.complete_appointment(12345).kind == ErrorKind.NOT_FOUND


def test_cancelled_appointment_can_be_edited_without_conflict_check(service, patient):
    appointment = book(service, patient, 10).data
    service.cancel_appointment(appointment.id, "Sick")
    book(service, patient, 10)
    result = service.update_appointment(appointment.id, {"notes": "Called back"})
    assert result.ok


def test_delete_appointment(service, patient):
    appointment = book(service, patient, 10).data
    assert service.delete_appointment(appointment.id).ok
    assert service.get_appointment(appointment.id).kind == ErrorKind.NOT_FOUND
    assert service.delete_appointment(appointment.id).kind == ErrorKind.NOT_FOUND


def test_delete_appointment_with_stock_usage_is_blocked(service, patient):
    appointment = book(service, patient, 10).data
    gloves = service.create_item("Gloves", Category.SUPPLIES, quantity=50, unit="pairs").data
    service.remove_stock(gloves.id, 2, TransactionReason.PATIENT_USE, appointment_id=appointment.id)
    result = service.delete_appointment(appointment.id)
    assert result.kind == ErrorKind.HAS_HISTORY


def test_listing_queries(service, patient):
    other = service.create_patient("Sam Rivera").data
    book(service, patient, 14, day=TODAY)
    book(service, patient, 11)
    book(service, other, 9)
    book(service, other, 9, day=TOMORROW + timedelta(days=7))

    assert [a.start_time for a in service.appointments_on(TOMORROW).data] == [time(9, 0), time(11, 0)]
    assert len(service.todays_appointments().data) == 1
    assert len(service.appointments_for_patient(other.id).data) == 2
    assert len(service.appointments_between(TODAY, TOMORROW).data) == 3
    assert len(service.list_appointments().data) == 4
    assert service.appointments_between(TOMORROW, TODAY).kind == ErrorKind.VALIDATION


def test_statistics(service, patient):
    book(service, patient, 14, day=TODAY)
    cancelled = book(service, patient, 15, day=TODAY).data
    service.cancel_appointment(cancelled.id)
    book(service, patient, 11)

    stats = service.appointment_statistics().data
    assert stats.todays_appointments == 1
    assert stats.upcoming_appointments == 2


def test_accepted_bookings_never_overlap(service, patient):
    requests = [(9, 0, 30), (9, 20, 30), (9, 30, 15), (9, 40, 40), (9, 45, 20), (10, 5, 10),
                (10, 10, 60), (10, 15, 5), (11, 0, 120), (12, 30, 30), (13, 0, 30), (12, 59, 2)]
    for hour, minute, duration in requests:
        book(service, patient, hour, minute, duration)

    active = [a for a in service.appointments_on(TOMORROW).data if a.status != AppointmentStatus.CANCELLED]
    assert len(active) > 1
    for a, b in combinations(active, 2):
        assert not TimeRange.from_slot(a.start_time, a.duration_minutes).overlaps(
            TimeRange.from_slot(b.start_time, b.duration_minutes)
        )
