from datetime import date, datetime

import pytest

from mf_data.core.exceptions import InvalidNavDateError
from mf_data.utils.dates import parse_nav_date, to_iso_date, try_parse_nav_date


@pytest.mark.parametrize("raw", ["2024-03-05", "05-03-2024", "5-3-2024", "05-Mar-2024", "05-MAR-2024", "2024-03-05T10:00:00Z"])
def test_accepted_formats(raw):
    assert parse_nav_date(raw) == date(2024, 3, 5)


def test_date_and_datetime_objects():
    assert parse_nav_date(date(2024, 1, 2)) == date(2024, 1, 2)
    assert parse_nav_date(datetime(2024, 1, 2, 15, 30)) == date(2024, 1, 2)


@pytest.mark.parametrize("raw", ["", "2024/03/05", "31-02-2024", "05-Foo-2024", "yesterday", "20240305"])
def test_rejected_formats(raw):
    with pytest.raises(InvalidNavDateError):
        parse_nav_date(raw)


def test_invalid_date_is_a_value_error():
    with pytest.raises(ValueError):
        parse_nav_date("not a date")


def test_try_parse_returns_none():
    assert try_parse_nav_date(None) is None
    assert try_parse_nav_date("garbage") is None
    assert try_parse_nav_date("01-01-2020") == date(2020, 1, 1)


def test_to_iso_date():
    assert to_iso_date("07-Jun-2023") == "2023-06-07"
