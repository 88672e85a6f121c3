import asyncio
import logging
import os
import threading
import time
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from werkzeug.utils import secure_filename

from analyzer.batch import BatchCoordinator, BatchProgress
from analyzer.errors import AnalyzerError, UnsupportedFileType
from file_encoding import check_supported
from invoice_rendering import Issuer
from llm_wrappers import (
    MistralAnalysisClient,
    MistralExtractionClient,
    OpenRouterAnalysisClient,
    OpenRouterExtractionClient,
)
from models import BatchOutcome, Reservation, UploadedFile
from reservation_tables import summarize_reservations

logger = logging.getLogger(__name__)

RUNNING = "running"
ANALYZING = "analyzing"
DONE = "done"
FAILED = "failed"
ANALYSIS_FAILED = "analysis_failed"


def build_clients(config: Mapping[str, Any], llm_choice: str):
    """Create the (extraction, analysis) client pair for the chosen provider."""
    if llm_choice == 'OpenRouter':
        return (
            OpenRouterExtractionClient(config['OPENROUTER_API_KEY'], config['OPENROUTER_EXTRACTION_MODEL']),
            OpenRouterAnalysisClient(config['OPENROUTER_API_KEY'], config['OPENROUTER_ANALYSIS_MODEL'],
                                     config['REPORT_PERIOD']),
        )
    return (
        MistralExtractionClient(config['MISTRAL_API_KEY'], config['EXTRACTION_MODEL']),
        MistralAnalysisClient(config['MISTRAL_API_KEY'], config['ANALYSIS_MODEL'], config['REPORT_PERIOD']),
    )


def build_issuer(config: Mapping[str, Any]) -> Issuer:
    return Issuer(
        name=config['ISSUER_NAME'],
        address=config['ISSUER_ADDRESS'],
        file_prefix=config['INVOICE_FILE_PREFIX'],
        font_path=config.get('INVOICE_FONT_PATH'),
    )


def save_uploads(files, upload_folder: str) -> Tuple[List[UploadedFile], List[str]]:
    """
    Store supported uploads under unique names in upload_folder.
    Returns (accepted files, names of rejected files).
    """
    os.makedirs(upload_folder, exist_ok=True)
    accepted: List[UploadedFile] = []
    rejected: List[str] = []
    for file_storage in files:
        if not file_storage or not file_storage.filename:
            continue
        name = file_storage.filename
        try:
            media_type = check_supported(name, file_storage.mimetype)
        except UnsupportedFileType as e:
            logger.warning(e.user_message)
            rejected.append(name)
            continue
        stored = f"{uuid.uuid4().hex}_{secure_filename(name) or 'upload'}"
        path = os.path.join(upload_folder, stored)
        file_storage.save(path)
        accepted.append(UploadedFile(name=name, path=path, media_type=media_type))
    return accepted, rejected


def cleanup_uploads(files: Sequence[UploadedFile]) -> None:
    for uploaded in files:
        try:
            if os.path.exists(uploaded.path):
                os.remove(uploaded.path)
        except OSError as rm_err:
            logger.warning(f"Failed to remove temp file {uploaded.path}: {rm_err}")


class AnalysisJob:
    """State of one analyze run, shared between the worker and request threads."""

    def __init__(self, files: Sequence[UploadedFile], llm_choice: str, rejected_files: Sequence[str] = ()):
        self.id = uuid.uuid4().hex
        self.files = list(files)
        self.llm_choice = llm_choice
        self.rejected_files = list(rejected_files)
        self.created_at = datetime.now().isoformat()
        self.created_ts = time.monotonic()
        self.progress = BatchProgress()
        self._lock = threading.Lock()
        self.status = RUNNING
        self.reservations: List[Reservation] = []
        self.failed_files: List[str] = []
        self.summary: Optional[Dict[str, Any]] = None
        self.report: Optional[str] = None
        self.warning: Optional[str] = None
        self.error: Optional[str] = None

    def update(self, **fields) -> None:
        with self._lock:
            for key, value in fields.items():
                setattr(self, key, value)

    def set_outcome(self, outcome: BatchOutcome) -> None:
        self.update(
            status=ANALYZING,
            reservations=list(outcome.reservations),
            failed_files=list(outcome.failed_files),
            summary=summarize_reservations(outcome.reservations),
            warning=outcome.warning,
        )

    @property
    def can_retry_analysis(self) -> bool:
        with self._lock:
            return bool(self.reservations) and self.status in (DONE, ANALYSIS_FAILED)

    def begin_retry(self) -> bool:
        """Switch to ANALYZING if a retry is allowed. False when one is already running."""
        with self._lock:
            if not self.reservations or self.status not in (DONE, ANALYSIS_FAILED):
                return False
            self.status = ANALYZING
            self.error = None
            return True

    def to_payload(self) -> Dict[str, Any]:
        with self._lock:
            payload = {
                'success': self.error is None,
                'job_id': self.id,
                'status': self.status,
                'created_at': self.created_at,
                'reservations': [r.to_wire() for r in self.reservations],
                'failed_files': list(self.failed_files),
                'rejected_files': list(self.rejected_files),
                'summary': self.summary,
                'report': self.report,
                'warning': self.warning,
                'errors': [self.error] if self.error else [],
            }
        payload['progress'] = self.progress.snapshot()
        return payload


class JobRegistry:
    """
    In-memory jobs; a session keeps only its latest job.
    Jobs older than ttl_seconds are dropped, and at most max_jobs are kept
    (oldest first out) so clients without a session cannot grow it forever.
    """

    def __init__(self, max_jobs: int = 100, ttl_seconds: Optional[float] = 3600):
        self._lock = threading.Lock()
        self._jobs: "OrderedDict[str, AnalysisJob]" = OrderedDict()
        self.max_jobs = max_jobs
        self.ttl_seconds = ttl_seconds

    def add(self, job: AnalysisJob, replaces: Optional[str] = None) -> AnalysisJob:
        with self._lock:
            if replaces:
                self._jobs.pop(replaces, None)
            self._jobs[job.id] = job
            self._evict()
        return job

    def _evict(self) -> None:
        if self.ttl_seconds is not None:
            cutoff = time.monotonic() - self.ttl_seconds
            for job_id in [i for i, j in self._jobs.items() if j.created_ts < cutoff]:
                del self._jobs[job_id]
        while len(self._jobs) > self.max_jobs:
            job_id, _ = self._jobs.popitem(last=False)
            logger.info(f"Evicted job {job_id}")

    def get(self, job_id: Optional[str]) -> Optional[AnalysisJob]:
        with self._lock:
            return self._jobs.get(job_id) if job_id else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


async def _analyze(job: AnalysisJob, analysis_client) -> None:
    try:
        report = await analysis_client.analyze(job.reservations)
    except AnalyzerError as e:
        logger.error(f"Analysis failed for job {job.id}: {e.user_message}")
        job.update(status=ANALYSIS_FAILED, error=e.user_message)
        return
    job.update(status=DONE, report=report, error=None)


async def run_job(job: AnalysisJob, extraction_client, analysis_client) -> None:
    """Extract every file of the job, then generate the report."""
    coordinator = BatchCoordinator(extraction_client, progress=job.progress)
    try:
        outcome = await coordinator.run(job.files)
    except AnalyzerError as e:
        job.update(status=FAILED, error=e.user_message)
        return
    finally:
        cleanup_uploads(job.files)
    job.set_outcome(outcome)
    await _analyze(job, analysis_client)


def _run_in_loop(job: AnalysisJob, coro_factory) -> None:
    try:
        asyncio.run(coro_factory())
    except Exception:
        logger.exception(f"Job {job.id} crashed")
        job.update(status=FAILED if not job.reservations else ANALYSIS_FAILED,
                   error=AnalyzerError.user_message)


def _dispatch(job: AnalysisJob, coro_factory, inline: bool) -> None:
    if inline:
        _run_in_loop(job, coro_factory)
        return
    threading.Thread(target=_run_in_loop, args=(job, coro_factory), daemon=True).start()


def start_job(job: AnalysisJob, extraction_client, analysis_client, inline: bool = False) -> None:
    _dispatch(job, lambda: run_job(job, extraction_client, analysis_client), inline)


def retry_analysis(job: AnalysisJob, analysis_client, inline: bool = False) -> None:
    """Run only the analysis step again. The caller has already called job.begin_retry()."""
    _dispatch(job, lambda: _analyze(job, analysis_client), inline)
