"""Tests for operating-hours evaluation and template rendering."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from leadcatcher.businesses.hours import (
    DEFAULT_CLOSED_TEMPLATE,
    DEFAULT_OPEN_TEMPLATE,
    build_acknowledgment,
    is_business_hours,
    render_template,
)
from leadcatcher.businesses.models import BusinessProfile

WEEKDAY_HOURS = {
    "monday": {"open": "09:00", "close": "17:00", "isOpen": True},
    "tuesday": {"open": "09:00", "close": "17:00", "isOpen": True},
    "sunday": {"open": "10:00", "close": "14:00", "isOpen": False},
}

# 2024-01-15 is a Monday; 14:00 UTC is 09:00 in New York (EST).
MONDAY_9AM_NY = datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)


def _business(**overrides: object) -> BusinessProfile:
    values: dict = {"id": uuid4(), "name": "Fix-It Phones", "forwarding_number": "+15550001111"}
    values.update(overrides)
    return BusinessProfile(**values)


class TestIsBusinessHours:
    def test_no_schedule_is_open(self) -> None:
        assert is_business_hours(None, "America/New_York", MONDAY_9AM_NY)
        assert is_business_hours({}, "America/New_York", MONDAY_9AM_NY)

    def test_opening_minute_is_inclusive(self) -> None:
        assert is_business_hours(WEEKDAY_HOURS, "America/New_York", MONDAY_9AM_NY)

    def test_closing_minute_is_inclusive(self) -> None:
        at = datetime(2024, 1, 15, 22, 0, tzinfo=timezone.utc)  # 17:00 NY
        assert is_business_hours(WEEKDAY_HOURS, "America/New_York", at)

    def test_after_close(self) -> None:
        at = datetime(2024, 1, 15, 22, 1, tzinfo=timezone.utc)  # 17:01 NY
        assert not is_business_hours(WEEKDAY_HOURS, "America/New_York", at)

    def test_before_open(self) -> None:
        at = datetime(2024, 1, 15, 13, 59, tzinfo=timezone.utc)  # 08:59 NY
        assert not is_business_hours(WEEKDAY_HOURS, "America/New_York", at)

    def test_day_marked_closed(self) -> None:
        at = datetime(2024, 1, 14, 16, 0, tzinfo=timezone.utc)  # Sunday 11:00 NY
        assert not is_business_hours(WEEKDAY_HOURS, "America/New_York", at)

    def test_missing_day_is_closed(self) -> None:
        at = datetime(2024, 1, 17, 16, 0, tzinfo=timezone.utc)  # Wednesday
        assert not is_business_hours(WEEKDAY_HOURS, "America/New_York", at)

    def test_timezone_shifts_the_day(self) -> None:
        # Monday 02:00 UTC is still Sunday evening in Los Angeles.
        at = datetime(2024, 1, 15, 2, 0, tzinfo=timezone.utc)
        assert not is_business_hours(WEEKDAY_HOURS, "America/Los_Angeles", at)

    def test_unknown_timezone_fails_open(self) -> None:
        at = datetime(2024, 1, 17, 16, 0, tzinfo=timezone.utc)
        assert is_business_hours(WEEKDAY_HOURS, "Mars/Olympus_Mons", at)


class TestTemplates:
    def test_render_known_and_unknown_placeholders(self) -> None:
        assert render_template("Hi from {{business_name}}{{missing}}!", {"business_name": "Acme"}) == "Hi from Acme!"

    def test_open_uses_custom_template(self) -> None:
        business = _business(sms_template="Thanks for calling {{business_name}}!")
        assert build_acknowledgment(business, True) == "Thanks for calling Fix-It Phones!"

    def test_closed_uses_closed_template(self) -> None:
        business = _business(sms_template="open", sms_template_closed="{{business_name}} is closed")
        assert build_acknowledgment(business, False) == "Fix-It Phones is closed"

    @pytest.mark.parametrize(("is_open", "expected"), [(True, DEFAULT_OPEN_TEMPLATE), (False, DEFAULT_CLOSED_TEMPLATE)])
    def test_defaults(self, is_open: bool, expected: str) -> None:
        assert build_acknowledgment(_business(), is_open) == expected

    def test_blank_name_falls_back(self) -> None:
        business = _business(name="", sms_template="Hi from {{business_name}}")
        assert build_acknowledgment(business, True) == "Hi from our business"
