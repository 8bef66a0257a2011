"""
Result data models.

Value objects returned by the ledger and the submission service. Each one
knows how to render itself in the camelCase JSON shape the web client
expects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CostEstimate:
    """
    Outcome of a dry-run cost computation.

    Nothing was debited or recorded; the flags describe what a real
    submission with the same inputs would run into.
    """

    pages: int
    estimated: bool
    per_page_cents: int
    color_page_cents: int
    cost_cents: int
    balance_cents: int
    month_spent_cents: int
    year_spent_cents: int
    monthly_limit_cents: int
    yearly_limit_cents: int
    insufficient_balance: bool
    would_exceed_monthly: bool
    would_exceed_yearly: bool

    @property
    def allowed(self) -> bool:
        return not (self.insufficient_balance or self.would_exceed_monthly or self.would_exceed_yearly)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages": self.pages,
            "estimated": self.estimated,
            "perPageCents": self.per_page_cents,
            "colorPageCents": self.color_page_cents,
            "costCents": self.cost_cents,
            "balanceCents": self.balance_cents,
            "monthSpentCents": self.month_spent_cents,
            "yearSpentCents": self.year_spent_cents,
            "monthlyLimitCents": self.monthly_limit_cents,
            "yearlyLimitCents": self.yearly_limit_cents,
            "insufficientBalance": self.insufficient_balance,
            "wouldExceedMonthly": self.would_exceed_monthly,
            "wouldExceedYearly": self.would_exceed_yearly,
        }


@dataclass(frozen=True)
class LedgerReceipt:
    """Snapshot of a committed debit and the queued job it created."""

    job_id: int
    cost_cents: int
    balance_before_cents: int
    balance_after_cents: int
    month_spent_cents: int
    year_spent_cents: int


@dataclass(frozen=True)
class SubmissionResult:
    """
    Result of a successful print submission.

    Only produced when the print backend accepted the job; every failure
    path raises instead.
    """

    record_id: int
    backend_job_id: str
    pages: int
    cost_cents: int
    balance_cents: int
    month_spent_cents: int
    year_spent_cents: int
    is_duplex: bool
    is_color: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.backend_job_id,
            "recordId": self.record_id,
            "ok": True,
            "pages": self.pages,
            "costCents": self.cost_cents,
            "balanceCents": self.balance_cents,
            "monthSpentCents": self.month_spent_cents,
            "yearSpentCents": self.year_spent_cents,
            "isDuplex": self.is_duplex,
            "isColor": self.is_color,
        }


@dataclass(frozen=True)
class AccountSummary:
    """Balance, pricing and limits of one account after period rollover."""

    user_id: int
    username: str
    role: str
    balance_cents: int
    per_page_cents: int
    color_page_cents: int
    month_spent_cents: int
    year_spent_cents: int
    monthly_limit_cents: int
    yearly_limit_cents: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "username": self.username,
            "role": self.role,
            "balanceCents": self.balance_cents,
            "perPageCents": self.per_page_cents,
            "colorPageCents": self.color_page_cents,
            "monthSpentCents": self.month_spent_cents,
            "yearSpentCents": self.year_spent_cents,
            "monthlyLimitCents": self.monthly_limit_cents,
            "yearlyLimitCents": self.yearly_limit_cents,
        }


@dataclass(frozen=True)
class JobDraft:
    """Descriptive fields of a job row, filled in by the ledger on debit."""

    username: str
    printer: str
    filename: str
    stored_path: str
    pages_estimated: bool = False
    sides: str = "one-sided"
    is_duplex: bool = False
    copies: int = 1
    page_range: Optional[str] = None
