from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException

from tutorbook_backend.models.sessions import RecurrenceRule
from tutorbook_backend.services.session_service import expand_recurrence, js_weekday, overlaps


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestWeekday:

    def test_sunday_is_zero(self):
        assert js_weekday(date(2030, 1, 6)) == 0

    def test_monday_is_one_and_saturday_is_six(self):
        assert js_weekday(date(2030, 1, 7)) == 1
        assert js_weekday(date(2030, 1, 12)) == 6


class TestExpandRecurrence:

    def test_monday_wednesday_in_local_zone(self):
        rule = RecurrenceRule(
            days_of_week=[3, 1],
            time="18:00",
            start_date=date(2030, 1, 7),
            end_date=date(2030, 1, 20),
            timezone="Asia/Ho_Chi_Minh"
        )
        starts = expand_recurrence(rule)
        assert starts == [
            _utc(2030, 1, 7, 11, 0),
            _utc(2030, 1, 9, 11, 0),
            _utc(2030, 1, 14, 11, 0),
            _utc(2030, 1, 16, 11, 0),
        ]

    def test_exclusion_dates_are_skipped(self):
        rule = RecurrenceRule(
            days_of_week=[1],
            time="09:30",
            start_date=date(2030, 1, 7),
            end_date=date(2030, 1, 28),
            exclusion_dates=[date(2030, 1, 14)]
        )
        starts = expand_recurrence(rule)
        assert [s.date() for s in starts] == [date(2030, 1, 7), date(2030, 1, 21), date(2030, 1, 28)]

    def test_max_occurrences_caps_the_series(self):
        rule = RecurrenceRule(days_of_week=[0, 1, 2, 3, 4, 5, 6], time="08:00", start_date=date(2030, 1, 1), max_occurrences=5)
        assert len(expand_recurrence(rule)) == 5

    def test_scan_horizon_stops_open_ended_rules(self):
        rule = RecurrenceRule(days_of_week=[2], time="08:00", start_date=date(2030, 1, 1))
        starts = expand_recurrence(rule, scan_days=30, default_max_occurrences=100)
        assert len(starts) == 5  # Tuesdays: 1, 8, 15, 22, 29

    def test_unknown_timezone_is_rejected(self):
        rule = RecurrenceRule(days_of_week=[1], time="08:00", start_date=date(2030, 1, 1), timezone="Mars/Olympus")
        with pytest.raises(HTTPException) as e:
            expand_recurrence(rule)
        assert e.value.status_code == 400
        assert e.value.code == "INVALID_TIMEZONE"

    def test_invalid_day_of_week_fails_validation(self):
        with pytest.raises(ValueError):
            RecurrenceRule(days_of_week=[7], time="08:00", start_date=date(2030, 1, 1))


class TestOverlaps:

    def test_touching_intervals_do_not_overlap(self):
        assert not overlaps(_utc(2030, 1, 1, 10), _utc(2030, 1, 1, 11), _utc(2030, 1, 1, 11), _utc(2030, 1, 1, 12))

    def test_overlap_is_symmetric(self):
        a = (_utc(2030, 1, 1, 10), _utc(2030, 1, 1, 11))
        b = (_utc(2030, 1, 1, 10, 30), _utc(2030, 1, 1, 11, 30))
        assert overlaps(*a, *b)
        assert overlaps(*b, *a)

    def test_containment_overlaps(self):
        assert overlaps(_utc(2030, 1, 1, 9), _utc(2030, 1, 1, 12), _utc(2030, 1, 1, 10), _utc(2030, 1, 1, 11))
