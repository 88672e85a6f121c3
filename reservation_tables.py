from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from models import Reservation

CSV_COLUMNS = [
    'bookingNumber', 'guestName', 'checkInDate', 'checkOutDate',
    'nights', 'grossAmount', 'bookingCommission', 'transactionFee', 'netAmount',
]


def parse_date(text: str) -> Optional[date]:
    """Parse a DD.MM.YYYY date, tolerating a trailing dot. None if invalid."""
    try:
        return datetime.strptime((text or '').strip().rstrip('.'), '%d.%m.%Y').date()
    except ValueError:
        return None


def count_nights(reservation: Reservation) -> int:
    """Nights between check-in and check-out, 0 for unusable dates."""
    check_in = parse_date(reservation.check_in_date)
    check_out = parse_date(reservation.check_out_date)
    if check_in is None or check_out is None:
        return 0
    return max((check_out - check_in).days, 0)


def reservations_to_dataframe(reservations: Sequence[Reservation]) -> pd.DataFrame:
    """One row per reservation with nights and net payout columns"""
    rows = []
    for reservation in reservations:
        row = reservation.to_wire()
        row['nights'] = count_nights(reservation)
        row['netAmount'] = round(
            reservation.gross_amount - reservation.booking_commission - reservation.transaction_fee, 2
        )
        rows.append(row)
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def summarize_reservations(reservations: Sequence[Reservation]) -> Dict[str, Any]:
    """Totals and KPIs (ADR, LOS) of the aggregated batch"""
    df = reservations_to_dataframe(reservations)
    count = len(df)
    nights = int(df['nights'].sum()) if count else 0
    gross = float(df['grossAmount'].sum()) if count else 0.0
    commission = float(df['bookingCommission'].sum()) if count else 0.0
    fee = float(df['transactionFee'].sum()) if count else 0.0
    return {
        'reservation_count': count,
        'total_nights': nights,
        'gross_amount': round(gross, 2),
        'booking_commission': round(commission, 2),
        'transaction_fee': round(fee, 2),
        'net_amount': round(gross - commission - fee, 2),
        'average_daily_rate': round(gross / nights, 2) if nights else 0.0,
        'average_length_of_stay': round(nights / count, 2) if count else 0.0,
    }


def reservations_to_csv(reservations: Sequence[Reservation]) -> str:
    return reservations_to_dataframe(reservations).to_csv(index=False)
