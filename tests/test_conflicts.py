from datetime import time

from conftest import TOMORROW, book

from clinic import crud
from clinic.conflicts import conflicts_with, find_conflicts


def test_returns_every_overlapping_appointment(service, database, patient):
    first = book(service, patient, 10, 0, 30).data
    second = book(service, patient, 10, 30, 30).data
    book(service, patient, 11, 30, 30)

    with database.session_scope() as db:
        conflicts = find_conflicts(db, TOMORROW, time(10, 15), 30)
        assert [a.id for a in conflicts] == [first.id, second.id]


def test_touching_slots_are_free(service, database, patient):
    book(service, patient, 10, 0, 30)
    with database.session_scope() as db:
        assert find_conflicts(db, TOMORROW, time(10, 30), 30) == []
        assert find_conflicts(db, TOMORROW, time(9, 30), 30) == []


def test_cancelled_appointments_do_not_conflict(service, database, patient):
    appointment = book(service, patient, 10, 0, 30).data
    service.cancel_appointment(appointment.id, "Patient rescheduled")
    with database.session_scope() as db:
        assert find_conflicts(db, TOMORROW, time(10, 0), 30) == []


def test_completed_and_no_show_still_occupy_the_slot(service, database, patient):
    done = book(service, patient, 10, 0, 30).data
    missed = book(service, patient, 11, 0, 30).data
    service.complete_appointment(done.id, "Seen")
    service.mark_no_show(missed.id)
    with database.session_scope() as db:
        assert len(find_conflicts(db, TOMORROW, time(10, 0), 90)) == 2


def test_exclude_id_ignores_the_edited_appointment(service, database, patient):
    appointment = book(service, patient, 10, 0, 30).data
    with database.session_scope() as db:
        assert find_conflicts(db, TOMORROW, time(10, 10), 30, exclude_id=appointment.id) == []


def test_other_days_are_ignored(service, database, patient):
    book(service, patient, 10, 0, 30)
    with database.session_scope() as db:
        assert find_conflicts(db, TOMORROW.replace(day=TOMORROW.day + 1), time(10, 0), 30) == []


def test_conflicts_with(service, database, patient):
    a = book(service, patient, 10, 0, 30).data
    b = book(service, patient, 10, 30, 30).data
    with database.session_scope() as db:
        first, second = crud.get_appointment(db, a.id), crud.get_appointment(db, b.id)
        assert not conflicts_with(first, second)
        second.start_time = time(10, 20)
        assert conflicts_with(first, second)
        assert conflicts_with(second, first)
        db.rollback()
