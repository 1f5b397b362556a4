from datetime import date, datetime, time

import pytest

from clinic import timeutils
from clinic.timeutils import TimeRange


def slot(hour, minute, duration):
    return TimeRange.from_slot(time(hour, minute), duration)


def test_from_slot_measures_minutes_since_midnight():
    r = slot(10, 15, 45)
    assert (r.start, r.end, r.duration) == (615, 660, 45)


def test_partial_overlap():
    assert slot(10, 0, 30).overlaps(slot(10, 15, 30))


def test_touching_endpoints_do_not_overlap():
    assert not slot(10, 0, 30).overlaps(slot(10, 30, 30))
    assert not slot(10, 30, 30).overlaps(slot(10, 0, 30))


def test_containment_overlaps():
    assert slot(9, 0, 180).overlaps(slot(10, 0, 5))


def test_overlap_is_symmetric():
    ranges = [slot(9, 0, 30), slot(9, 15, 10), slot(9, 30, 60), slot(10, 0, 5), slot(8, 0, 240), slot(12, 0, 30)]
    for a in ranges:
        for b in ranges:
            assert timeutils.overlaps(a, b) == timeutils.overlaps(b, a)


def test_ends_same_day():
    assert slot(23, 30, 30).ends_same_day
    assert not slot(23, 30, 31).ends_same_day


def test_end_time():
    assert timeutils.end_time(time(9, 45), 30) == time(10, 15)


@pytest.mark.parametrize("day,start,expected", [
    (date(2030, 3, 3), time(23, 0), True),
    (date(2030, 3, 4), time(8, 59), True),
    (date(2030, 3, 4), time(9, 0), True),
    (date(2030, 3, 4), time(9, 0, 40), False),
    (date(2030, 3, 4), time(9, 1), False),
    (date(2030, 3, 5), time(0, 0), False),
])
def test_is_in_past(day, start, expected):
    now = datetime(2030, 3, 4, 9, 0, 40)
    assert timeutils.is_in_past(day, start, now) is expected


def test_today_past_upcoming():
    now = datetime(2030, 3, 4, 12, 0)
    assert timeutils.is_today(date(2030, 3, 4), now)
    assert timeutils.is_past(date(2030, 3, 4), time(11, 0), now)
    assert timeutils.is_upcoming(date(2030, 3, 4), time(13, 0), now)
    assert not timeutils.is_upcoming(date(2030, 3, 3), time(13, 0), now)


def test_business_hours_are_inclusive():
    assert timeutils.is_within_business_hours(time(8, 0))
    assert timeutils.is_within_business_hours(time(18, 0))
    assert not timeutils.is_within_business_hours(time(7, 59))
    assert not timeutils.is_within_business_hours(time(18, 1))
    assert timeutils.is_within_business_hours(time(7, 0), start=time(7, 0), end=time(9, 0))


def test_business_days_skip_weekends():
    friday = date(2030, 3, 8)
    monday = date(2030, 3, 11)
    assert timeutils.is_weekday(friday)
    assert not timeutils.is_weekday(date(2030, 3, 9))
    assert timeutils.next_business_day(friday) == monday
    assert timeutils.previous_business_day(monday) == friday


def test_relative_day_label():
    today = date(2030, 3, 4)
    assert timeutils.relative_day_label(today, today) == "Today"
    assert timeutils.relative_day_label(date(2030, 3, 5), today) == "Tomorrow"
    assert timeutils.relative_day_label(date(2030, 3, 3), today) == "Yesterday"
    assert timeutils.relative_day_label(date(2030, 3, 7), today) == "In 3 days"
    assert timeutils.relative_day_label(date(2030, 3, 2), today) == "2 days ago"


@pytest.mark.parametrize("value,expected", [
    (time(9, 30), "9:30 AM"),
    (time(0, 5), "12:05 AM"),
    (time(12, 0), "12:00 PM"),
    (time(15, 45), "3:45 PM"),
])
def test_format_time(value, expected):
    assert timeutils.format_time(value) == expected


def test_format_duration():
    assert timeutils.format_duration(45) == "45 min"
    assert timeutils.format_duration(60) == "1 hour"
    assert timeutils.format_duration(120) == "2 hours"
    assert timeutils.format_duration(90) == "1h 30m"
