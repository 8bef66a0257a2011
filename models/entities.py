"""
Persistent entities for the print ledger.

Account and Setting rows are owned by the external administration layer;
this application only reads them and mutates the balance / spend / period
columns of Account inside ledger transactions. PrintJob rows are created
and transitioned exclusively by the ledger and the refund compensator.
TopupRecord is append-only.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class JobStatus(Enum):
    """
    Status of a print submission.

    Lifecycle:
        QUEUED -> (PRINTED | FAILED)
    """

    QUEUED = "queued"
    """Account debited, job not yet accepted by the print backend."""

    PRINTED = "printed"
    """Print backend accepted the job; backend job id recorded."""

    FAILED = "failed"
    """Dispatch failed and the debit was refunded."""

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.QUEUED


class TopupType(Enum):
    MANUAL = "manual"
    REFUND = "refund"


class Account(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")

    # All money in minor units (cents)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monthly_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    yearly_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    month_spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    year_spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # "YYYY-MM" / "YYYY" tags of the period the spent counters belong to
    month_period: Mapped[str] = mapped_column(String(7), nullable=False, default="")
    year_period: Mapped[str] = mapped_column(String(4), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<Account id={self.id} username={self.username!r} balance={self.balance_cents}>"


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)


class PrintJob(Base, TimestampMixin):
    __tablename__ = "print_jobs"
    __table_args__ = (
        Index("ix_print_jobs_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    username: Mapped[str] = mapped_column(String(150), nullable=False)

    printer: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_path: Mapped[str] = mapped_column(Text, nullable=False)

    pages: Mapped[int] = mapped_column(Integer, nullable=False)
    pages_estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cost_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    month_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    year_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Spend periods the debit was counted in; a refund only reduces these
    month_period: Mapped[str] = mapped_column(String(7), nullable=False, default="")
    year_period: Mapped[str] = mapped_column(String(4), nullable=False, default="")

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=JobStatus.QUEUED.value)
    backend_job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    is_duplex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_color: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sides: Mapped[str] = mapped_column(String(32), nullable=False, default="one-sided")
    copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    page_range: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    def to_dict(self) -> dict:
        """Convert to the JSON shape of the print history endpoint."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "username": self.username,
            "printer": self.printer,
            "filename": self.filename,
            "pages": self.pages,
            "pagesEstimated": self.pages_estimated,
            "costCents": self.cost_cents,
            "balanceBeforeCents": self.balance_before_cents,
            "balanceAfterCents": self.balance_after_cents,
            "monthTotalCents": self.month_total_cents,
            "yearTotalCents": self.year_total_cents,
            "jobId": self.backend_job_id or "",
            "status": self.status,
            "isDuplex": self.is_duplex,
            "isColor": self.is_color,
            "sides": self.sides,
            "copies": self.copies,
            "pageRange": self.page_range or "",
            "createdAt": self.created_at.isoformat() if self.created_at else "",
        }


class TopupRecord(Base):
    __tablename__ = "topups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    print_job_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("print_jobs.id", ondelete="SET NULL"), nullable=True
    )
    operator_name: Mapped[str] = mapped_column(String(150), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
