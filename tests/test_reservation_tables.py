"""Tests for nights, KPI summary and CSV export."""

from datetime import date

import pytest

from reservation_tables import (
    count_nights,
    parse_date,
    reservations_to_csv,
    reservations_to_dataframe,
    summarize_reservations,
)


def test_parse_date_accepts_trailing_dot():
    assert parse_date("05.10.2025.") == date(2025, 10, 5)
    assert parse_date("2025-10-05") is None


def test_count_nights(reservation_factory):
    r = reservation_factory("1", check_in="01.10.2025", check_out="05.10.2025")
    assert count_nights(r) == 4


def test_count_nights_tolerates_bad_dates(reservation_factory):
    reversed_stay = reservation_factory("1", check_in="05.10.2025", check_out="01.10.2025")
    garbage = reservation_factory("2", check_in="sutra", check_out="05.10.2025")
    assert count_nights(reversed_stay) == 0
    assert count_nights(garbage) == 0


def test_summarize_reservations(reservation_factory):
    reservations = [
        reservation_factory("1", check_in="01.10.2025", check_out="05.10.2025", gross=400, commission=60, fee=4),
        reservation_factory("2", check_in="10.10.2025", check_out="12.10.2025", gross=200, commission=30, fee=2),
    ]
    summary = summarize_reservations(reservations)

    assert summary["reservation_count"] == 2
    assert summary["total_nights"] == 6
    assert summary["gross_amount"] == 600
    assert summary["net_amount"] == 504
    assert summary["average_daily_rate"] == 100
    assert summary["average_length_of_stay"] == 3


def test_summarize_empty_batch():
    summary = summarize_reservations([])
    assert summary["reservation_count"] == 0
    assert summary["average_daily_rate"] == 0.0
    assert summary["average_length_of_stay"] == 0.0


def test_dataframe_and_csv(reservation_factory):
    r = reservation_factory("4711", gross=100, commission=15, fee=1.4)
    df = reservations_to_dataframe([r])
    assert df.loc[0, "netAmount"] == pytest.approx(83.6)
    assert df.loc[0, "nights"] == 4

    csv_text = reservations_to_csv([r])
    header = csv_text.splitlines()[0]
    assert header.startswith("bookingNumber,guestName,checkInDate")
    assert "4711" in csv_text
