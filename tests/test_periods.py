from datetime import date, datetime

import pytest

from periods import (
    MonthKey,
    clamp_to_month,
    days_in_month,
    is_date_in_month,
    month_key_for,
    parse_date,
)


def test_month_key_parse_and_render():
    key = MonthKey.parse("2024-02")
    assert key == MonthKey(2024, 2)
    assert str(key) == "2024-02"
    assert str(MonthKey(987, 3)) == "0987-03"


@pytest.mark.parametrize("raw", ["2024-2", "2024-13", "24-02", "2024/02", ""])
def test_month_key_rejects_malformed_input(raw):
    with pytest.raises(ValueError):
        MonthKey.parse(raw)


def test_month_key_shift_crosses_year_boundaries():
    assert MonthKey(2024, 1).shift(-1) == MonthKey(2023, 12)
    assert MonthKey(2024, 12).shift(1) == MonthKey(2025, 1)
    assert MonthKey(2024, 5).shift(12) == MonthKey(2025, 5)
    assert MonthKey(2024, 5).shift(-17) == MonthKey(2022, 12)


def test_month_keys_order_chronologically():
    assert MonthKey(2023, 12) < MonthKey(2024, 1) < MonthKey(2024, 2)
    assert max(MonthKey(2024, 3), MonthKey(2023, 11)) == MonthKey(2024, 3)


def test_clamp_snaps_to_last_day_of_month():
    assert MonthKey(2024, 2).clamp(31) == date(2024, 2, 29)
    assert MonthKey(2023, 2).clamp(31) == date(2023, 2, 28)
    assert MonthKey(2024, 4).clamp(31) == date(2024, 4, 30)
    assert MonthKey(2024, 4).clamp(15) == date(2024, 4, 15)
    assert clamp_to_month(date(2024, 1, 30), "2024-02") == date(2024, 2, 29)


def test_days_in_month():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2100, 2) == 28
    assert days_in_month(2024, 12) == 31


def test_parse_date_accepts_iso_timestamps():
    assert parse_date("2024-02-15T10:30:00.000Z") == date(2024, 2, 15)
    assert parse_date(datetime(2024, 2, 15, 23, 59)) == date(2024, 2, 15)
    assert month_key_for("2024-02-15") == MonthKey(2024, 2)


def test_is_date_in_month():
    assert is_date_in_month("2024-02-01", "2024-02")
    assert is_date_in_month("2024-02-29T12:00:00Z", MonthKey(2024, 2))
    assert not is_date_in_month("2024-03-01", "2024-02")
    assert not is_date_in_month("", "2024-02")
    assert not is_date_in_month(None, "2024-02")
    assert not is_date_in_month("not-a-date", "2024-02")
