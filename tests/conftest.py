"""Pytest fixtures: deterministic fakes for the remote AI services."""

import asyncio
import base64
from typing import Dict, List, Union

import pytest

from analyzer.errors import AnalysisFailed, ExtractionFailed
from models import Reservation, UploadedFile


def make_reservation(number: str, guest: str = "Ana Marić", check_in: str = "01.10.2025",
                     check_out: str = "05.10.2025", gross: float = 400.0,
                     commission: float = 60.0, fee: float = 5.6) -> Reservation:
    return Reservation.model_validate({
        "bookingNumber": number,
        "guestName": guest,
        "checkInDate": check_in,
        "checkOutDate": check_out,
        "grossAmount": gross,
        "bookingCommission": commission,
        "transactionFee": fee,
    })


class FakeExtractionClient:
    """Answers by file content: a reservation list or an exception to raise."""

    def __init__(self, responses: Dict[str, Union[List[Reservation], Exception]],
                 delays: Dict[str, float] = None):
        self.responses = responses
        self.delays = delays or {}
        self.calls: List[str] = []

    async def extract(self, encoded_payload: str, media_type: str) -> List[Reservation]:
        content = base64.b64decode(encoded_payload).decode()
        self.calls.append(content)
        await asyncio.sleep(self.delays.get(content, 0))
        result = self.responses[content]
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeAnalysisClient:
    def __init__(self, report: str = "# Izvještaj\n\nSve u redu.", fail: bool = False):
        self.report = report
        self.fail = fail
        self.received: List[List[Reservation]] = []

    async def analyze(self, reservations) -> str:
        self.received.append(list(reservations))
        if self.fail:
            raise AnalysisFailed()
        return self.report


@pytest.fixture
def reservation_factory():
    return make_reservation


@pytest.fixture
def write_upload(tmp_path):
    """Create an UploadedFile whose bytes are the given text."""
    def _write(name: str, content: str, media_type: str = "application/pdf") -> UploadedFile:
        path = tmp_path / f"stored_{name}"
        path.write_text(content, encoding="utf-8")
        return UploadedFile(name=name, path=str(path), media_type=media_type)
    return _write


@pytest.fixture
def network_error():
    try:
        raise ConnectionError("connection reset")
    except ConnectionError as cause:
        error = ExtractionFailed()
        error.__cause__ = cause
        return error
