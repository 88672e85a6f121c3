import io
import logging
import re
import zipfile
from dataclasses import dataclass
from typing import Optional, Sequence, Set, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from analyzer.errors import ArchiveGenerationFailed
from models import Reservation
from reservation_tables import parse_date

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
CUSTOM_FONT = "InvoiceFont"


@dataclass(frozen=True)
class Issuer:
    name: str
    address: str
    file_prefix: str
    font_path: Optional[str] = None


def _fonts(issuer: Issuer) -> Tuple[str, str]:
    """Regular and bold font names. The standard fonts lack č, ć and đ."""
    if not issuer.font_path:
        return "Helvetica", "Helvetica-Bold"
    if CUSTOM_FONT not in pdfmetrics.getRegisteredFontNames():
        pdfmetrics.registerFont(TTFont(CUSTOM_FONT, issuer.font_path))
    return CUSTOM_FONT, CUSTOM_FONT


def _y(top_mm: float) -> float:
    # layout is measured from the top edge of the page
    return PAGE_HEIGHT - top_mm * mm


def _format_issue_date(text: str) -> str:
    parsed = parse_date(text)
    return parsed.strftime('%d.%m.%Y.') if parsed else text


def _format_amount(value: float) -> str:
    return f"{value:.2f} EUR"


def render_invoice(reservation: Reservation, issuer: Issuer) -> bytes:
    """Draw the one-page invoice for a reservation and return the PDF bytes."""
    regular, bold = _fonts(issuer)
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Račun {reservation.booking_number}")

    # Issuer
    c.setFont(regular, 10)
    c.drawString(10 * mm, _y(20), "IZDAVATELJ RAČUNA:")
    c.setFont(bold, 10)
    c.drawString(10 * mm, _y(25), issuer.name)
    c.setFont(regular, 10)
    c.drawString(10 * mm, _y(30), issuer.address)

    c.setFont(bold, 18)
    c.drawCentredString(PAGE_WIDTH / 2, _y(50), f"RAČUN br. {reservation.booking_number}")

    # Recipient and dates
    c.setFont(regular, 10)
    c.drawString(10 * mm, _y(70), "PRIMATELJ RAČUNA:")
    c.setFont(bold, 10)
    c.drawString(10 * mm, _y(75), reservation.guest_name)
    c.setFont(regular, 10)
    c.drawString(140 * mm, _y(70), f"Datum izdavanja: {_format_issue_date(reservation.check_out_date)}")
    c.drawString(140 * mm, _y(75), f"Datum usluge: {reservation.check_in_date} - {reservation.check_out_date}")

    # Service table
    c.setLineWidth(0.5)
    c.line(10 * mm, _y(95), 200 * mm, _y(95))
    c.setFont(bold, 10)
    c.drawString(15 * mm, _y(102), "Opis usluge")
    c.drawRightString(185 * mm, _y(102), "Iznos")
    c.line(10 * mm, _y(107), 200 * mm, _y(107))
    c.setFont(regular, 10)
    c.drawString(15 * mm, _y(114), "Usluga smještaja")
    c.drawRightString(185 * mm, _y(114), _format_amount(reservation.gross_amount))
    c.line(10 * mm, _y(120), 200 * mm, _y(120))

    c.setFont(bold, 12)
    c.drawString(130 * mm, _y(130), "UKUPNO ZA PLATITI:")
    c.drawRightString(185 * mm, _y(130), _format_amount(reservation.gross_amount))

    c.setFont(regular, 9)
    c.drawString(10 * mm, _y(260), "Napomena: Iznajmljivač nije u sustavu PDV-a.")
    c.drawString(10 * mm, _y(265), "Usluga smještaja rezervirana putem platforme Booking.com.")

    c.showPage()
    c.save()
    return buf.getvalue()


def invoice_filename(reservation: Reservation, prefix: str) -> str:
    check_in = re.sub(r"\D", "", reservation.check_in_date)
    guest = re.sub(r"\s", "", reservation.guest_name)
    return f"{prefix}_{check_in}_{guest}.pdf"


def _unique_name(name: str, taken: Set[str]) -> str:
    candidate, n = name, 1
    stem, ext = name.rsplit('.', 1)
    while candidate in taken:
        n += 1
        candidate = f"{stem}_{n}.{ext}"
    taken.add(candidate)
    return candidate


def build_invoice_archive(reservations: Sequence[Reservation], issuer: Issuer) -> bytes:
    """Render every reservation and pack the invoices into one ZIP archive."""
    if not reservations:
        raise ArchiveGenerationFailed("Nema podataka o rezervacijama za generiranje računa.")
    taken: Set[str] = set()
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for reservation in reservations:
                name = _unique_name(invoice_filename(reservation, issuer.file_prefix), taken)
                zf.writestr(name, render_invoice(reservation, issuer))
    except Exception as e:
        logger.exception("Invoice archive generation failed")
        raise ArchiveGenerationFailed() from e
    logger.info("Generated %d invoice(s)", len(reservations))
    return buf.getvalue()
