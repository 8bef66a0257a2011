"""
Services layer for PrintQuotaWeb.

This module contains the business logic services:
- BillingLedger: Debits, dry-run estimates, job status transitions
- RefundCompensator: Refunds debits of jobs that could not be dispatched
- CupsPrintBackend: Print backend on top of the CUPS command line tools
- SubmissionService: Runs one print request end to end

Thread Model:
    Every request runs on its own worker thread. Services hold no
    per-request state; the Store transaction is the only serialization
    point between concurrent submissions of the same account.
"""

from .ledger_service import BillingLedger
from .refund_service import RefundCompensator
from .print_dispatcher import PrintBackend, CupsPrintBackend, PrintRequest
from .submission_service import SubmissionService, UploadStore

__all__ = [
    "BillingLedger",
    "RefundCompensator",
    "PrintBackend",
    "CupsPrintBackend",
    "PrintRequest",
    "SubmissionService",
    "UploadStore",
]
