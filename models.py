from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Reservation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    booking_number: str = Field(alias="bookingNumber", description="Booking.com reservation number ('Br. rezervacije')")
    guest_name: str = Field(alias="guestName", description="Guest name ('Ime gosta')")
    check_in_date: str = Field(alias="checkInDate", description="Check-in date ('Prijava') in DD.MM.YYYY format")
    check_out_date: str = Field(alias="checkOutDate", description="Check-out date ('Odjava') in DD.MM.YYYY format")
    gross_amount: float = Field(alias="grossAmount", ge=0, description="Gross amount ('Iznos'), number without currency symbol")
    booking_commission: float = Field(alias="bookingCommission", ge=0, description="Booking.com commission ('Provizija')")
    transaction_fee: float = Field(alias="transactionFee", ge=0, description="Transaction fee ('Naknada za transakciju')")

    def to_wire(self) -> dict:
        """camelCase dict used by the HTTP API and the analysis prompt."""
        return self.model_dump(by_alias=True)


class ReservationTable(BaseModel):
    reservations: List[Reservation] = Field(default_factory=list, description="All reservation rows of the payout table")


@dataclass(frozen=True)
class UploadedFile:
    name: str
    path: str
    media_type: str


@dataclass(frozen=True)
class EncodedFile:
    encoded_payload: str
    media_type: str


class FileState(str, Enum):
    PENDING = "pending"
    ENCODING = "encoding"
    EXTRACTING = "extracting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FileState.SUCCEEDED, FileState.FAILED)


class BatchClassification(str, Enum):
    ALL_FAILED = "all_failed"
    PARTIAL_SUCCESS = "partial_success"
    FULL_SUCCESS = "full_success"


@dataclass
class BatchOutcome:
    reservations: List[Reservation] = field(default_factory=list)
    succeeded_files: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def classification(self) -> BatchClassification:
        if not self.reservations:
            return BatchClassification.ALL_FAILED
        if self.failed_files:
            return BatchClassification.PARTIAL_SUCCESS
        return BatchClassification.FULL_SUCCESS

    @property
    def warning(self) -> Optional[str]:
        if self.classification is not BatchClassification.PARTIAL_SUCCESS:
            return None
        return (
            f"Nije moguće obraditi: {', '.join(self.failed_files)}. "
            f"Uspješno obrađeno datoteka: {len(self.succeeded_files)}."
        )
