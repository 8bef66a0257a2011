"""
Print submission service.

Runs one print request end to end on the request's own worker thread:

    classify/convert/count (DocumentPipeline)
        -> debit + QUEUED job (BillingLedger, one transaction)
        -> dispatch (PrintBackend)
        -> PRINTED                          on success
        -> refund + FAILED, DispatchError   on dispatch failure

FAILURE BOUNDARY:
    Anything that fails before the debit commits has no side effects: the
    stored upload is deleted and no job row exists. Once the debit has
    committed the submission can no longer be cancelled and always ends
    PRINTED or FAILED; a dispatch failure is refunded before the caller
    sees a generic DispatchError.

CANCELLATION:
    The HTTP routes pass no cancel event; a request-bound conversion is
    limited by CONVERT_TIMEOUT_SECONDS alone. In-process callers (batch
    imports, worker shutdown) can pass a threading.Event to kill a running
    conversion early.

Usage:
    service = SubmissionService(ledger, pipeline, backend, compensator, uploads)

    upload = uploads.save(request.files["file"])
    order = PrintOrder(printer="office", upload=upload, options=options)
    result = service.submit(identity, order)
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from core.exceptions import CompensationError, DispatchError, UploadError
from logging_config import get_logger, get_submission_logger
from models.job_result import CostEstimate, JobDraft, SubmissionResult
from models.order import Identity, PrintOrder, StoredUpload
from modules.converter import DocumentPipeline
from services.ledger_service import BillingLedger
from services.print_dispatcher import PrintBackend, PrintRequest
from services.refund_service import RefundCompensator


logger = get_logger(__name__)

MAX_FILENAME_LENGTH = 255
_SAFE_EXTENSION_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789")


class UploadStore:
    """
    Writes uploads to ``<folder>/<YYYYMM>/<uuid4 hex>_<secure name>``.

    Every upload gets a fresh path, so concurrent submissions never write
    the same file.
    """

    def __init__(self, folder: str | Path):
        self.folder = Path(folder)

    def save(self, file: Optional[FileStorage]) -> StoredUpload:
        """
        Persist an uploaded file.

        Raises:
            UploadError: If no file was sent
        """
        if file is None or not file.filename:
            raise UploadError("No file uploaded")

        original = file.filename[:MAX_FILENAME_LENGTH]
        relpath = f"{datetime.now():%Y%m}/{uuid.uuid4().hex}_{_storage_name(original)}"
        path = self.folder / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        file.save(path)

        logger.debug(f"Stored upload '{original}' at {relpath}")
        return StoredUpload(
            path=path,
            relpath=relpath,
            original_filename=original,
            content_type=file.mimetype or None,
        )

    def discard(self, upload: StoredUpload) -> None:
        try:
            upload.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete upload {upload.relpath}: {e}")


def _storage_name(filename: str) -> str:
    """
    Filesystem-safe name that keeps the original extension.

    secure_filename() drops non-ASCII characters, which can swallow the
    dot of e.g. "报告.docx"; the extension drives conversion, so it is
    re-attached when lost.
    """
    safe = secure_filename(filename) or "upload"
    name = Path(filename).name
    if "." in name:
        extension = name.rsplit(".", 1)[1].lower()
        if extension and set(extension) <= _SAFE_EXTENSION_CHARS and not safe.lower().endswith(f".{extension}"):
            safe = f"{safe}.{extension}"
    return safe


class SubmissionService:
    """Coordinates pipeline, ledger, backend and compensator for one request at a time."""

    def __init__(
        self,
        ledger: BillingLedger,
        pipeline: DocumentPipeline,
        backend: PrintBackend,
        compensator: RefundCompensator,
        uploads: UploadStore,
    ):
        self.ledger = ledger
        self.pipeline = pipeline
        self.backend = backend
        self.compensator = compensator
        self.uploads = uploads

    def estimate(
        self,
        identity: Identity,
        upload: StoredUpload,
        is_color: bool,
        cancel: Optional[threading.Event] = None,
    ) -> CostEstimate:
        """
        Count pages and dry-run the debit.

        The upload only exists to be measured and is always deleted.
        """
        try:
            with self.pipeline.prepare(upload.path, upload.original_filename, cancel) as doc:
                return self.ledger.estimate(identity.user_id, doc.pages, is_color, estimated=doc.estimated)
        finally:
            self.uploads.discard(upload)

    def submit(
        self,
        identity: Identity,
        order: PrintOrder,
        cancel: Optional[threading.Event] = None,
    ) -> SubmissionResult:
        """
        Print an uploaded document and charge the account for it.

        Args:
            identity: Verified caller
            order: Stored upload plus validated options
            cancel: Optional event for in-process callers; honoured until
                the debit commits, ignored afterwards

        Raises:
            UploadError, DocumentError, LedgerError: Before the debit; the
                upload is deleted and nothing is recorded
            DispatchError: The backend rejected the job; already refunded
            CompensationError: The refund itself failed
        """
        submission_id = uuid.uuid4().hex
        job_log = get_submission_logger(submission_id)
        upload = order.upload
        options = order.options
        committed = False

        job_log.info(
            f"Submission by {identity.username} ({identity.user_id}): "
            f"'{upload.original_filename}' -> {order.printer}"
        )

        try:
            with self.pipeline.prepare(upload.path, upload.original_filename, cancel) as doc:
                job_log.info(f"Prepared {doc.kind.value}: {doc.pages} page(s), estimated={doc.estimated}")

                print_request = PrintRequest(
                    printer=order.printer,
                    file_path=doc.print_path,
                    mime_type=doc.mime_type,
                    username=identity.username,
                    filename=upload.original_filename,
                    sides=options.sides,
                    is_color=options.is_color,
                    copies=options.copies,
                    page_range=options.page_range or None,
                )
                draft = JobDraft(
                    username=identity.username,
                    printer=order.printer,
                    filename=upload.original_filename,
                    stored_path=upload.relpath,
                    pages_estimated=doc.estimated,
                    sides=options.sides,
                    is_duplex=options.is_duplex,
                    copies=options.copies,
                    page_range=options.page_range or None,
                )

                receipt = self.ledger.debit(identity.user_id, doc.pages, options.is_color, draft)
                committed = True
                job_log.info(f"Job {receipt.job_id} queued, charged {receipt.cost_cents} cents")

                backend_job_id = self._dispatch(print_request, receipt.job_id, job_log)
                self._record_printed(receipt.job_id, backend_job_id, job_log)
        finally:
            if not committed:
                self.uploads.discard(upload)

        job_log.info(f"Job {receipt.job_id} printed as {backend_job_id}")
        return SubmissionResult(
            record_id=receipt.job_id,
            backend_job_id=backend_job_id,
            pages=doc.pages,
            cost_cents=receipt.cost_cents,
            balance_cents=receipt.balance_after_cents,
            month_spent_cents=receipt.month_spent_cents,
            year_spent_cents=receipt.year_spent_cents,
            is_duplex=options.is_duplex,
            is_color=options.is_color,
        )

    def _record_printed(self, job_id: int, backend_job_id: str, job_log) -> None:
        """
        Mark the job PRINTED.

        The printer already has the job, so a storage failure here must not
        fail the request; the job stays QUEUED and is logged for manual
        reconciliation.
        """
        try:
            self.ledger.mark_printed(job_id, backend_job_id)
        except SQLAlchemyError as e:
            job_log.critical(
                f"Job {job_id} accepted by backend as {backend_job_id} but could not be marked printed: {e}"
            )

    def _dispatch(self, print_request: PrintRequest, job_id: int, job_log) -> str:
        """Send the job; on any failure refund it and raise a generic DispatchError."""
        try:
            return self.backend.submit(print_request)
        except Exception as e:
            job_log.error(f"Dispatch of job {job_id} to {print_request.printer} failed: {e}")
            try:
                self.compensator.compensate(job_id, reason=f"dispatch failed: {e}")
            except CompensationError:
                job_log.critical(f"Job {job_id} left unrefunded after dispatch failure")
                raise
            raise DispatchError("Print dispatch failed", printer=print_request.printer) from e
