import asyncio
import base64
import io
import mimetypes
import os
from typing import Optional

import pandas as pd

from analyzer.errors import ReadFailed, UnsupportedFileType
from models import EncodedFile, UploadedFile

TEXT_MEDIA_TYPES = {'text/csv', 'text/plain'}
SPREADSHEET_MEDIA_TYPES = {'application/vnd.ms-excel'}
ACCEPTED_MEDIA_TYPES = {'application/pdf'} | TEXT_MEDIA_TYPES | SPREADSHEET_MEDIA_TYPES

# Browsers often send these for .csv/.xls/.txt, so the extension decides
EXTENSION_MEDIA_TYPES = {
    '.csv': 'text/csv',
    '.xls': 'application/vnd.ms-excel',
    '.txt': 'text/plain',
}


def _accepted(media_type: Optional[str]) -> bool:
    if not media_type:
        return False
    return media_type.startswith('image/') or media_type in ACCEPTED_MEDIA_TYPES


def resolve_media_type(filename: str, declared: Optional[str]) -> Optional[str]:
    """Return the media type to send for ``filename``, or None if unsupported.

    The declared content type wins when it is one we accept; otherwise the
    file name extension is used as a fallback.
    """
    declared = (declared or '').split(';', 1)[0].strip().lower()
    if _accepted(declared):
        return declared
    ext = os.path.splitext(filename or '')[1].lower()
    if ext in EXTENSION_MEDIA_TYPES:
        return EXTENSION_MEDIA_TYPES[ext]
    guessed = mimetypes.guess_type(filename or '')[0]
    return guessed if _accepted(guessed) else None


def check_supported(filename: str, declared: Optional[str]) -> str:
    media_type = resolve_media_type(filename, declared)
    if media_type is None:
        raise UnsupportedFileType(filename)
    return media_type


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


async def encode_file(uploaded: UploadedFile) -> EncodedFile:
    """Read an uploaded file and return its base64 payload and media type."""
    try:
        data = await asyncio.to_thread(_read_bytes, uploaded.path)
    except OSError as e:
        raise ReadFailed(uploaded.name) from e
    b64 = base64.b64encode(data).decode()
    return EncodedFile(encoded_payload=b64, media_type=uploaded.media_type)


def to_data_url(encoded: EncodedFile) -> str:
    return f"data:{encoded.media_type};base64,{encoded.encoded_payload}"


def spreadsheet_to_csv_text(data: bytes) -> str:
    """Flatten every sheet of a legacy .xls workbook into CSV text."""
    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, dtype=str)
    parts = []
    for name, df in sheets.items():
        parts.append(f"# {name}\n{df.fillna('').to_csv(index=False)}")
    return "\n".join(parts)


def decode_text(encoded: EncodedFile) -> str:
    """Text content of a CSV/TXT/XLS payload."""
    data = base64.b64decode(encoded.encoded_payload)
    if encoded.media_type in SPREADSHEET_MEDIA_TYPES:
        return spreadsheet_to_csv_text(data)
    for encoding in ("utf-8-sig", "cp1250"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1")


def is_text_like(media_type: str) -> bool:
    return media_type in TEXT_MEDIA_TYPES or media_type in SPREADSHEET_MEDIA_TYPES
