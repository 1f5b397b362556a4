"""
Shared fixtures: an in-memory SQLite database, a fixed clock and the façade.
"""
from datetime import date, datetime, time

import pytest

from clinic.database import Database
from clinic.models import Category
from clinic.service import ClinicService

# Monday morning; every booking in the tests is relative to this moment
NOW = datetime(2030, 3, 4, 9, 0)
TODAY = NOW.date()
TOMORROW = date(2030, 3, 5)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def service(database, clock):
    return ClinicService(database, clock=clock)


@pytest.fixture
def patient(service):
    return service.create_patient("Jordan Lee", phone="555-0100").data


@pytest.fixture
def item(service):
    """Gauze pads: quantity 10, threshold 5, no expiry."""
    return service.create_item("Gauze Pads", Category.SUPPLIES, quantity=10, unit="boxes", threshold=5).data


def book(service, patient, hour, minute=0, duration=30, day=TOMORROW, **kwargs):
    return service.create_appointment(patient.id, day, time(hour, minute), duration_minutes=duration, **kwargs)
