from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from eventdesk.utils import new_session_token, parse_iso_datetime, to_naive_utc, utcnow


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_to_naive_utc_converts_offsets():
    aware = datetime(2030, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == datetime(2030, 5, 1, 10, 0)
    assert to_naive_utc(None) is None


def test_parse_iso_datetime_accepts_trailing_z():
    assert parse_iso_datetime("2030-01-02T03:04:05Z") == datetime(2030, 1, 2, 3, 4, 5)
    assert parse_iso_datetime("2030-01-02T03:04") == datetime(2030, 1, 2, 3, 4)


def test_parse_iso_datetime_rejects_garbage():
    with pytest.raises(ValueError):
        parse_iso_datetime("next tuesday")


def test_session_tokens_are_unique():
    assert new_session_token() != new_session_token()
