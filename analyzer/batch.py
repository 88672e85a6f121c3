"""Concurrent per-file extraction with partial-failure reporting.

Each uploaded file runs its own encode -> extract pipeline on the event loop.
Pipelines never raise: a failure is recorded against its file and the batch
waits for every file before aggregating in submission order.
"""
import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from analyzer.errors import (
    AllFilesFailed,
    EmptyExtraction,
    ExtractionFailed,
    FileExtractionFailed,
    FileFailed,
    NoFilesSelected,
)
from file_encoding import encode_file
from models import BatchOutcome, EncodedFile, FileState, Reservation, UploadedFile

logger = logging.getLogger(__name__)

Encoder = Callable[[UploadedFile], Awaitable[EncodedFile]]


def unique_display_names(names: Sequence[str]) -> List[str]:
    """Suffix repeated file names with ' (2)', ' (3)' ... so each upload is reported on its own."""
    seen = set()
    result = []
    for name in names:
        candidate, n = name, 1
        while candidate in seen:
            n += 1
            candidate = f"{name} ({n})"
        seen.add(candidate)
        result.append(candidate)
    return result


class BatchProgress:
    """Per-file states of a running batch, safe to read from other threads."""

    def __init__(self, on_change: Optional[Callable[["BatchProgress"], None]] = None):
        self._lock = threading.Lock()
        self._names: List[str] = []
        self._states: List[FileState] = []
        self.completion_order: List[str] = []
        self.on_change = on_change

    def start(self, names: Sequence[str]) -> None:
        with self._lock:
            self._names = list(names)
            self._states = [FileState.PENDING] * len(names)
            self.completion_order = []
        self._notify()

    def set_state(self, index: int, state: FileState) -> None:
        with self._lock:
            if self._states[index].is_terminal:
                return
            self._states[index] = state
            if state.is_terminal:
                self.completion_order.append(self._names[index])
        self._notify()

    @property
    def total(self) -> int:
        return len(self._names)

    @property
    def processed(self) -> int:
        with self._lock:
            return len(self.completion_order)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "processed": len(self.completion_order),
                "total": len(self._names),
                "files": [
                    {"name": name, "state": state.value}
                    for name, state in zip(self._names, self._states)
                ],
            }

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)


class BatchCoordinator:
    def __init__(self, extraction_client, encoder: Encoder = encode_file,
                 progress: Optional[BatchProgress] = None):
        self.extraction_client = extraction_client
        self.encoder = encoder
        self.progress = progress or BatchProgress()

    async def run(self, files: Sequence[UploadedFile]) -> BatchOutcome:
        if not files:
            raise NoFilesSelected()

        names = unique_display_names([f.name for f in files])
        self.progress.start(names)
        logger.info("Extracting reservations from %d file(s)", len(files))
        results = await asyncio.gather(
            *(self._process_file(index, uploaded) for index, uploaded in enumerate(files))
        )

        outcome = BatchOutcome()
        for name, (reservations, failure) in zip(names, results):
            if failure is None:
                outcome.reservations.extend(reservations)
                outcome.succeeded_files.append(name)
            else:
                outcome.failed_files.append(name)
                outcome.failures[name] = failure.user_message

        logger.info(
            "Batch finished: %d reservation(s), %d file(s) failed",
            len(outcome.reservations), len(outcome.failed_files),
        )
        if not outcome.reservations:
            raise AllFilesFailed(outcome.failed_files)
        return outcome

    async def _process_file(self, index: int, uploaded: UploadedFile
                            ) -> Tuple[List[Reservation], Optional[FileFailed]]:
        try:
            self.progress.set_state(index, FileState.ENCODING)
            encoded = await self.encoder(uploaded)
            self.progress.set_state(index, FileState.EXTRACTING)
            try:
                reservations = await self.extraction_client.extract(
                    encoded.encoded_payload, encoded.media_type
                )
            except ExtractionFailed as e:
                raise FileExtractionFailed(uploaded.name) from e
            if not reservations:
                raise EmptyExtraction(uploaded.name)
        except FileFailed as e:
            logger.warning("File %s failed: %s (cause: %r)", uploaded.name, e.user_message, e.__cause__)
            self.progress.set_state(index, FileState.FAILED)
            return [], e
        except Exception as e:
            # Unexpected errors are still attributed to this file only
            logger.exception("Unexpected error while processing %s", uploaded.name)
            failure = FileExtractionFailed(uploaded.name)
            failure.__cause__ = e
            self.progress.set_state(index, FileState.FAILED)
            return [], failure

        self.progress.set_state(index, FileState.SUCCEEDED)
        return list(reservations), None
