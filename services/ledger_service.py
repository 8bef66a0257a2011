"""
Billing ledger: prepaid balances, spend limits and the job records they pay for.

Every money movement happens inside one Store transaction so that period
rollover, balance check, debit and job insertion land together or not at all.

DEBIT (one write transaction):
    1. Load the account (locking), AccountNotFoundError if absent
    2. Roll stale month/year spend counters over to the current period
    3. Read pricing settings
    4. cost = pages * (color_page_cents if color else per_page_cents)
    5. Check balance -> monthly limit -> yearly limit, raise the first violation
    6. Debit balance, add cost to both spent counters, insert a QUEUED job

ESTIMATE (dry run):
    Steps 1-5 in a read-only transaction. Rollover is applied to an
    in-memory AccountSnapshot, never to the row, so an estimate leaves
    balance, counters, period tags and jobs untouched.

JOB LIFECYCLE:
    QUEUED -> PRINTED  mark_printed(), guarded on status = queued
    QUEUED -> FAILED   RefundCompensator, guarded on status = queued

Usage:
    ledger = BillingLedger(store)

    estimate = ledger.estimate(user_id, pages=5, is_color=False)
    if estimate.allowed:
        receipt = ledger.debit(user_id, 5, False, draft)
        ledger.mark_printed(receipt.job_id, "office-42")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from core.exceptions import AccountNotFoundError
from core.store import (
    DEFAULT_COLOR_PAGE_CENTS,
    DEFAULT_PER_PAGE_CENTS,
    SETTING_COLOR_PAGE_CENTS,
    SETTING_PER_PAGE_CENTS,
    Store,
    get_setting_int,
)
from logging_config import get_logger
from models.entities import Account, JobStatus, PrintJob
from models.job_result import AccountSummary, CostEstimate, JobDraft, LedgerReceipt
from modules.estimator import PricingSettings, check_limits, compute_cost


logger = get_logger(__name__)


def period_tags(now: datetime) -> tuple[str, str]:
    """Return the ("YYYY-MM", "YYYY") tags of the calendar period containing ``now``."""
    return now.strftime("%Y-%m"), now.strftime("%Y")


def roll_over_periods(account, now: datetime) -> bool:
    """
    Reset spend counters whose period tag is stale.

    Works on an Account row or an AccountSnapshot. Calling it again within
    the same period changes nothing.

    Returns:
        True if any counter or tag changed
    """
    month_tag, year_tag = period_tags(now)
    changed = False

    if account.month_period != month_tag:
        account.month_spent_cents = 0
        account.month_period = month_tag
        changed = True

    if account.year_period != year_tag:
        account.year_spent_cents = 0
        account.year_period = year_tag
        changed = True

    return changed


@dataclass
class AccountSnapshot:
    """Detached copy of the ledger columns of an Account, safe to roll over in memory."""

    id: int
    balance_cents: int
    month_spent_cents: int
    year_spent_cents: int
    month_period: str
    year_period: str
    monthly_limit_cents: int
    yearly_limit_cents: int

    @classmethod
    def from_account(cls, account: Account) -> "AccountSnapshot":
        return cls(
            id=account.id,
            balance_cents=account.balance_cents,
            month_spent_cents=account.month_spent_cents,
            year_spent_cents=account.year_spent_cents,
            month_period=account.month_period,
            year_period=account.year_period,
            monthly_limit_cents=account.monthly_limit_cents,
            yearly_limit_cents=account.yearly_limit_cents,
        )


class BillingLedger:
    """
    Account debits, dry-run estimates and job status transitions.

    Holds no state besides the store, the clock and pricing defaults, so a
    single instance serves all request threads.
    """

    def __init__(
        self,
        store: Store,
        clock: Optional[Callable[[], datetime]] = None,
        default_pricing: Optional[PricingSettings] = None,
    ):
        """
        Args:
            store: Storage context
            clock: Returns the current local time (injectable for tests)
            default_pricing: Used for settings keys that are missing
        """
        self.store = store
        self._clock = clock or datetime.now
        self.default_pricing = default_pricing or PricingSettings(
            per_page_cents=DEFAULT_PER_PAGE_CENTS,
            color_page_cents=DEFAULT_COLOR_PAGE_CENTS,
        )

    # =========================================================================
    # COST
    # =========================================================================

    def estimate(self, user_id: int, pages: int, is_color: bool, estimated: bool = False) -> CostEstimate:
        """
        Dry-run the debit and report what it would run into.

        Never mutates anything, whatever the outcome.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        with self.store.transaction(read_only=True) as session:
            account = self._load_account(session, user_id, for_update=False)
            snapshot = AccountSnapshot.from_account(account)
            pricing = self.pricing(session)

        roll_over_periods(snapshot, self._clock())
        cost = compute_cost(pages, is_color, pricing)
        check = check_limits(cost, snapshot)

        logger.debug(
            f"Estimate user={user_id} pages={pages} color={is_color} cost={cost} ok={check.ok}"
        )
        return CostEstimate(
            pages=pages,
            estimated=estimated,
            per_page_cents=pricing.per_page_cents,
            color_page_cents=pricing.color_page_cents,
            cost_cents=cost,
            balance_cents=snapshot.balance_cents,
            month_spent_cents=snapshot.month_spent_cents,
            year_spent_cents=snapshot.year_spent_cents,
            monthly_limit_cents=snapshot.monthly_limit_cents,
            yearly_limit_cents=snapshot.yearly_limit_cents,
            insufficient_balance=check.insufficient_balance,
            would_exceed_monthly=check.would_exceed_monthly,
            would_exceed_yearly=check.would_exceed_yearly,
        )

    def debit(self, user_id: int, pages: int, is_color: bool, draft: JobDraft) -> LedgerReceipt:
        """
        Charge the account and record a QUEUED job, atomically.

        Raises:
            AccountNotFoundError: If the account does not exist
            InsufficientBalanceError: Balance below cost
            MonthlyLimitExceededError: Monthly spend would pass the limit
            YearlyLimitExceededError: Yearly spend would pass the limit
        """
        with self.store.transaction() as session:
            account = self._load_account(session, user_id, for_update=True)

            if roll_over_periods(account, self._clock()):
                logger.info(
                    f"Rolled over spend periods for user {user_id} "
                    f"to {account.month_period}/{account.year_period}"
                )

            pricing = self.pricing(session)
            cost = compute_cost(pages, is_color, pricing)
            check_limits(cost, account).raise_for_violation(user_id)

            balance_before = account.balance_cents
            account.balance_cents = balance_before - cost
            account.month_spent_cents += cost
            account.year_spent_cents += cost

            job = PrintJob(
                user_id=user_id,
                username=draft.username,
                printer=draft.printer,
                filename=draft.filename,
                stored_path=draft.stored_path,
                pages=pages,
                pages_estimated=draft.pages_estimated,
                cost_cents=cost,
                balance_before_cents=balance_before,
                balance_after_cents=account.balance_cents,
                month_total_cents=account.month_spent_cents,
                year_total_cents=account.year_spent_cents,
                month_period=account.month_period,
                year_period=account.year_period,
                status=JobStatus.QUEUED.value,
                is_duplex=draft.is_duplex,
                is_color=is_color,
                sides=draft.sides,
                copies=draft.copies,
                page_range=draft.page_range,
            )
            session.add(job)
            session.flush()

            receipt = LedgerReceipt(
                job_id=job.id,
                cost_cents=cost,
                balance_before_cents=balance_before,
                balance_after_cents=account.balance_cents,
                month_spent_cents=account.month_spent_cents,
                year_spent_cents=account.year_spent_cents,
            )

        logger.info(
            f"Debited user {user_id}: {cost} cents for {pages} page(s), "
            f"balance {receipt.balance_before_cents} -> {receipt.balance_after_cents}, job {receipt.job_id}"
        )
        return receipt

    # =========================================================================
    # JOB STATUS
    # =========================================================================

    def mark_printed(self, job_id: int, backend_job_id: str) -> bool:
        """
        Transition a QUEUED job to PRINTED.

        Returns:
            False if the job was not QUEUED (already terminal or missing)
        """
        with self.store.transaction() as session:
            result = session.execute(
                update(PrintJob)
                .where(PrintJob.id == job_id, PrintJob.status == JobStatus.QUEUED.value)
                .values(status=JobStatus.PRINTED.value, backend_job_id=backend_job_id)
            )
            changed = result.rowcount == 1

        if changed:
            logger.info(f"Job {job_id} printed as {backend_job_id}")
        else:
            logger.warning(f"Job {job_id} was not queued; printed transition skipped")
        return changed

    # =========================================================================
    # READ MODELS
    # =========================================================================

    def account_summary(self, user_id: int) -> AccountSummary:
        """
        Balance, pricing and limits of an account.

        Stale periods are rolled over and persisted, so the reported spend
        is always that of the current month and year.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        with self.store.transaction() as session:
            account = self._load_account(session, user_id, for_update=True)
            if roll_over_periods(account, self._clock()):
                logger.info(f"Rolled over spend periods for user {user_id}")
            pricing = self.pricing(session)

            return AccountSummary(
                user_id=account.id,
                username=account.username,
                role=account.role,
                balance_cents=account.balance_cents,
                per_page_cents=pricing.per_page_cents,
                color_page_cents=pricing.color_page_cents,
                month_spent_cents=account.month_spent_cents,
                year_spent_cents=account.year_spent_cents,
                monthly_limit_cents=account.monthly_limit_cents,
                yearly_limit_cents=account.yearly_limit_cents,
            )

    def list_jobs(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[PrintJob]:
        """Jobs of one user, newest first, with ``start <= created_at < end``."""
        stmt = select(PrintJob).where(PrintJob.user_id == user_id)
        if start is not None:
            stmt = stmt.where(PrintJob.created_at >= start)
        if end is not None:
            stmt = stmt.where(PrintJob.created_at < end)
        stmt = stmt.order_by(PrintJob.created_at.desc(), PrintJob.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.store.transaction(read_only=True) as session:
            return list(session.scalars(stmt))

    def get_job(self, job_id: int) -> Optional[PrintJob]:
        with self.store.transaction(read_only=True) as session:
            return session.get(PrintJob, job_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def pricing(self, session: Session) -> PricingSettings:
        return PricingSettings(
            per_page_cents=get_setting_int(session, SETTING_PER_PAGE_CENTS, self.default_pricing.per_page_cents),
            color_page_cents=get_setting_int(
                session, SETTING_COLOR_PAGE_CENTS, self.default_pricing.color_page_cents
            ),
        )

    def _load_account(self, session: Session, user_id: int, for_update: bool) -> Account:
        if for_update and self.store.supports_row_locks:
            account = session.scalars(
                select(Account).where(Account.id == user_id).with_for_update()
            ).first()
        else:
            account = session.get(Account, user_id)

        if account is None:
            raise AccountNotFoundError(user_id)
        return account
