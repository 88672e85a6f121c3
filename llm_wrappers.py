import json
import logging
import re
from typing import Any, Dict, List, Sequence, Union

from mistralai import DocumentURLChunk, ImageURLChunk, Mistral, TextChunk
from openai import AsyncOpenAI
from pydantic import ValidationError

from analyzer.errors import AnalysisFailed, ConfigurationError, ExtractionFailed
from file_encoding import decode_text, is_text_like, to_data_url
from models import EncodedFile, Reservation, ReservationTable

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_HEADERS = {
    "X-Title": "BookingPayoutAnalyzer",
    "HTTP-Referer": "https://localhost",
}


def _create_extraction_prompt() -> str:
    """Create the prompt for reservation table extraction"""
    return """
Analyze the provided document (image, PDF, spreadsheet or text export) of a Booking.com payout overview ("Tablica isplate"). Extract ALL reservation entries from the table.
**SOURCE COLUMNS → JSON FIELDS:**
- 'Br. rezervacije' → bookingNumber
- 'Ime gosta' → guestName
- 'Prijava' → checkInDate
- 'Odjava' → checkOutDate
- 'Iznos' → grossAmount
- 'Provizija' → bookingCommission
- 'Naknada za transakciju' → transactionFee
**RULES:**
1. All monetary values are plain numbers: period as the decimal separator, no currency symbols, no thousands separators. Commission and fee are positive numbers even if the document shows them as deductions.
2. Dates must be in 'DD.MM.YYYY' format.
3. Extract every row, do not summarize or skip reservations.
4. If the document contains no reservation table, return an empty list.
**RESPONSE FORMAT:**
Return ONLY a JSON object of the form {"reservations": [ ... ]}. Do not return markdown code block fences.
"""


def _create_analysis_prompt(reservations: Sequence[Reservation], period: str) -> str:
    """Create the Croatian prompt for the financial report"""
    data = json.dumps([r.to_wire() for r in reservations], indent=2, ensure_ascii=False)
    count = len(reservations)
    return f"""
# Uloga i Cilj
Ti si Booking.com Financijski Analizator. Nakon obrade priloženog JSON-a s podacima o rezervacijama generiraj detaljnu financijsku analizu.

# VAŽNO
*   Izlaz mora biti formatiran kao **Markdown** tekst.
*   Koristi hrvatski jezik.
*   Analiza se odnosi na razdoblje **{period}**.
*   Svi iznosi su u eurima (€).

# Podaci o Rezervacijama
Ovo su podaci o {count} rezervacija izvađeni iz dokumenata:
```json
{data}
```

# Zahtjev za Financijskom Analizom
Prikaži detaljan financijski izvještaj u strukturiranom Markdown formatu koji sadrži:

1.  **Pregled Troškova i Prihoda ({period}):**
    *   Ukupan Bruto Prihod (zbroj `grossAmount`).
    *   Ukupna Provizija Booking.com (u € i kao % Bruto Prihoda).
    *   Ukupna Naknada za Transakciju (u € i kao % Bruto Prihoda).
    *   Ukupni Troškovi Posredovanja (Provizija + Naknada).
    *   Ukupan Neto Prihod (Iznos za Isplatu).
    *   Prikaži ove podatke u Markdown tablici.

2.  **Ključni Pokazatelji Učinka (KPI):**
    *   Ukupan broj rezervacija ({count}).
    *   Ukupan broj ostvarenih noćenja (zbroj razlika datuma `checkOutDate` - `checkInDate` za svaku rezervaciju).
    *   Prosječna Dnevna Cijena (ADR = Ukupan Bruto Prihod / Ukupan broj noćenja).
    *   Prosječna Duljina Boravka (LOS = Ukupan broj noćenja / Ukupan broj rezervacija).
    *   Prikaži ove podatke kao listu.

3.  **Optimizacija i Preporuke:**
    *   Napiši nekoliko odlomaka s **konkretnim, primjenjivim koracima** za optimizaciju prihoda.
    *   **Smanjenje Troškova Posredovanja:** posebno se osvrni na naknade za transakciju i postavke plaćanja na Booking.com.
    *   **Povećanje Direktnih Rezervacija:** npr. vizitke s popustom, prikupljanje email adresa, program vjernosti.
    *   **Povećanje Duljine Boravka (LOS):** popusti za duži boravak, tjedni paketi, ponude za 5+ noći.
    *   **Genius Program:** prednosti i mane te kako ga iskoristiti bez gubitka prosječne dnevne cijene.
    *   Preporuke moraju biti praktične za malog iznajmljivača.
"""


def _extract_json(text: str) -> Union[dict, list]:
    """Extract the first JSON object or array from text."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"[\{\[]", text)
        if match:
            closer = "}" if match.group(0) == "{" else "]"
            end = text.rfind(closer)
            if end > match.start():
                try:
                    return json.loads(text[match.start():end + 1])
                except json.JSONDecodeError:
                    pass
        raise ValueError("Failed to extract valid JSON from model response.")


def _to_reservations(data: Union[dict, list]) -> List[Reservation]:
    if isinstance(data, list):
        data = {"reservations": data}
    return ReservationTable.model_validate(data).reservations


def _mistral_document_chunks(encoded: EncodedFile) -> List[Any]:
    if is_text_like(encoded.media_type):
        return [TextChunk(text=f"DOCUMENT CONTENT:\n{decode_text(encoded)}")]
    url = to_data_url(encoded)
    if encoded.media_type.startswith("image/"):
        return [ImageURLChunk(image_url=url)]
    return [DocumentURLChunk(document_url=url)]


def _openrouter_document_parts(encoded: EncodedFile) -> List[Dict[str, Any]]:
    if is_text_like(encoded.media_type):
        return [{"type": "text", "text": f"DOCUMENT CONTENT:\n{decode_text(encoded)}"}]
    url = to_data_url(encoded)
    if encoded.media_type.startswith("image/"):
        return [{"type": "image_url", "image_url": {"url": url}}]
    return [{"type": "file", "file": {"filename": "document.pdf", "file_data": url}}]


class MistralExtractionClient:
    """Reservation extraction through Mistral structured output."""

    def __init__(self, api_key: str, model: str):
        if not api_key:
            raise ConfigurationError("Mistral API ključ nije postavljen (MISTRAL_API_KEY).")
        self.client = Mistral(api_key=api_key)
        self.model = model

    async def extract(self, encoded_payload: str, media_type: str) -> List[Reservation]:
        encoded = EncodedFile(encoded_payload=encoded_payload, media_type=media_type)
        try:
            chunks = _mistral_document_chunks(encoded) + [TextChunk(text=_create_extraction_prompt())]
            chat = await self.client.chat.parse_async(
                model=self.model,
                messages=[{"role": "user", "content": chunks}],
                response_format=ReservationTable,
                temperature=0,
            )
            parsed = chat.choices[0].message.parsed
            if parsed is None:
                raise ValueError("Mistral returned no parsed content")
            return list(parsed.reservations)
        except Exception as e:
            logger.warning("Mistral extraction failed: %s", e)
            raise ExtractionFailed() from e


class OpenRouterExtractionClient:
    """Reservation extraction through an OpenRouter vision model."""

    def __init__(self, api_key: str, model: str):
        if not api_key:
            raise ConfigurationError("OpenRouter API ključ nije postavljen (OPENROUTER_API_KEY).")
        self.client = AsyncOpenAI(base_url=OPENROUTER_BASE_URL, api_key=api_key)
        self.model = model

    async def extract(self, encoded_payload: str, media_type: str) -> List[Reservation]:
        encoded = EncodedFile(encoded_payload=encoded_payload, media_type=media_type)
        try:
            content = _openrouter_document_parts(encoded)
            content.append({"type": "text", "text": _create_extraction_prompt()})
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                temperature=0,
                response_format={"type": "json_object"},
                extra_headers=OPENROUTER_HEADERS,
            )
            raw = (completion.choices[0].message.content or "").strip()
            return _to_reservations(_extract_json(raw))
        except (ValidationError, ValueError) as e:
            logger.warning("OpenRouter response did not match the reservation schema: %s", e)
            raise ExtractionFailed() from e
        except Exception as e:
            logger.warning("OpenRouter extraction failed: %s", e)
            raise ExtractionFailed() from e


class MistralAnalysisClient:
    def __init__(self, api_key: str, model: str, period: str):
        if not api_key:
            raise ConfigurationError("Mistral API ključ nije postavljen (MISTRAL_API_KEY).")
        self.client = Mistral(api_key=api_key)
        self.model = model
        self.period = period

    async def analyze(self, reservations: Sequence[Reservation]) -> str:
        try:
            chat = await self.client.chat.complete_async(
                model=self.model,
                messages=[{"role": "user", "content": _create_analysis_prompt(reservations, self.period)}],
            )
            report = chat.choices[0].message.content
        except Exception as e:
            logger.error("Mistral analysis failed: %s", e)
            raise AnalysisFailed() from e
        if not isinstance(report, str) or not report.strip():
            raise AnalysisFailed()
        return report


class OpenRouterAnalysisClient:
    def __init__(self, api_key: str, model: str, period: str):
        if not api_key:
            raise ConfigurationError("OpenRouter API ključ nije postavljen (OPENROUTER_API_KEY).")
        self.client = AsyncOpenAI(base_url=OPENROUTER_BASE_URL, api_key=api_key)
        self.model = model
        self.period = period

    async def analyze(self, reservations: Sequence[Reservation]) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": _create_analysis_prompt(reservations, self.period)}],
                extra_headers=OPENROUTER_HEADERS,
            )
            report = completion.choices[0].message.content
        except Exception as e:
            logger.error("OpenRouter analysis failed: %s", e)
            raise AnalysisFailed() from e
        if not report or not report.strip():
            raise AnalysisFailed()
        return report
