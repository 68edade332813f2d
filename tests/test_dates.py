from datetime import datetime, timedelta, timezone

import pytest

from tenantreport.core.dates import days_since, is_more_recent, most_recent, parse_graph_datetime

UTC = timezone.utc


@pytest.mark.parametrize("raw, expected", [
    ("2026-10-01T08:30:00Z", datetime(2026, 10, 1, 8, 30, tzinfo=UTC)),
    ("2026-10-01T08:30:00.1234567Z", datetime(2026, 10, 1, 8, 30, 0, 123456, tzinfo=UTC)),
    ("2026-10-01T10:30:00+02:00", datetime(2026, 10, 1, 8, 30, tzinfo=UTC)),
    ("2026-10-01 08:30:00", datetime(2026, 10, 1, 8, 30, tzinfo=UTC)),
    ("10/01/2026 08:30:00", datetime(2026, 10, 1, 8, 30, tzinfo=UTC)),
    ("10/01/2026 8:30:00 PM", datetime(2026, 10, 1, 20, 30, tzinfo=UTC)),
    ("25/10/2026 08:30:00", datetime(2026, 10, 25, 8, 30, tzinfo=UTC)),
    ("2026-10-01", datetime(2026, 10, 1, tzinfo=UTC)),
])
def test_known_formats(raw, expected):
    assert parse_graph_datetime(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "never", "2026-13-45T00:00:00Z", 12])
def test_unparseable_values_give_none(raw):
    assert parse_graph_datetime(raw) is None


def test_naive_datetime_is_treated_as_utc():
    assert parse_graph_datetime(datetime(2026, 1, 1)).tzinfo is not None


def test_days_since_rounds():
    now = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)
    assert days_since(now - timedelta(days=3, hours=11), now) == 3
    assert days_since(now - timedelta(days=3, hours=13), now) == 4
    assert days_since(None, now) is None


def test_is_more_recent_is_strict():
    a = datetime(2026, 1, 1, tzinfo=UTC)
    b = a + timedelta(seconds=1)
    assert is_more_recent(b, a)
    assert not is_more_recent(a, b)
    assert not is_more_recent(a, a)
    assert is_more_recent(a, None)
    assert not is_more_recent(None, a)


def test_most_recent_ignores_missing():
    a = datetime(2026, 1, 1, tzinfo=UTC)
    b = datetime(2026, 2, 1, tzinfo=UTC)
    assert most_recent(None, a, b, None) == b
    assert most_recent(None, None) is None
