"""
Data models for PrintQuotaWeb.

This module contains:
- entities: SQLAlchemy ORM tables (Account, PrintJob, TopupRecord, Setting)
- order: Frozen request-side models (Identity, PrintOptions, PrintOrder)
- job_result: Frozen result models (CostEstimate, LedgerReceipt, SubmissionResult,
  AccountSummary, JobDraft)
"""

from .entities import Account, PrintJob, TopupRecord, Setting, JobStatus, TopupType
from .order import Identity, PrintOptions, PrintOrder, StoredUpload
from .job_result import CostEstimate, LedgerReceipt, SubmissionResult, AccountSummary, JobDraft

__all__ = [
    # Entities
    "Account",
    "PrintJob",
    "TopupRecord",
    "Setting",
    "JobStatus",
    "TopupType",
    # Order models
    "Identity",
    "PrintOptions",
    "PrintOrder",
    "StoredUpload",
    # Result models
    "CostEstimate",
    "LedgerReceipt",
    "SubmissionResult",
    "AccountSummary",
    "JobDraft",
]
