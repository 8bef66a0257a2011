"""
Refund of a debit whose print job could not be dispatched.

Compensation runs in its own transaction, after the debit transaction has
already committed. It is guarded on the job still being QUEUED, so running
it twice for the same job credits the account once.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import CompensationError
from core.store import Store
from logging_config import get_logger
from models.entities import Account, JobStatus, PrintJob, TopupRecord, TopupType


logger = get_logger(__name__)


class RefundCompensator:
    """Reverses ledger debits of failed jobs."""

    def __init__(self, store: Store, operator_name: str = "system"):
        self.store = store
        self.operator_name = operator_name

    def compensate(self, job_id: int, reason: str = "") -> bool:
        """
        Credit the job cost back and mark the job FAILED.

        A spend counter is reduced by the cost, never below zero, only while
        it still tracks the period the job was debited in; after a rollover
        the debit no longer counts against the new period. A ``refund``
        TopupRecord is appended for reconciliation.

        Returns:
            True if this call refunded the job, False if it was no longer
            QUEUED (already refunded or printed)

        Raises:
            CompensationError: If the refund transaction fails. Money and
                job state may now disagree; logged at CRITICAL.
        """
        user_id = None
        cost = None
        try:
            with self.store.transaction() as session:
                job = self._load_job(session, job_id)
                if job is None or job.status != JobStatus.QUEUED.value:
                    state = job.status if job is not None else "missing"
                    logger.warning(f"Refund for job {job_id} skipped: job is {state}")
                    return False

                user_id = job.user_id
                cost = job.cost_cents
                account = session.get(Account, job.user_id)
                if account is None:
                    raise CompensationError(job_id, f"account {job.user_id} not found")

                balance_before = account.balance_cents
                account.balance_cents = balance_before + cost
                if account.month_period == job.month_period:
                    account.month_spent_cents = max(0, account.month_spent_cents - cost)
                if account.year_period == job.year_period:
                    account.year_spent_cents = max(0, account.year_spent_cents - cost)

                session.add(TopupRecord(
                    user_id=account.id,
                    amount_cents=cost,
                    balance_before_cents=balance_before,
                    balance_after_cents=account.balance_cents,
                    type=TopupType.REFUND.value,
                    print_job_id=job.id,
                    operator_name=self.operator_name,
                ))

                job.status = JobStatus.FAILED.value
                job.backend_job_id = None
        except CompensationError as e:
            logger.critical(f"{e.message} (user={user_id}, cost={cost}, reason={reason!r})")
            raise
        except SQLAlchemyError as e:
            logger.critical(
                f"Refund for job {job_id} failed (user={user_id}, cost={cost}, reason={reason!r}): {e}"
            )
            raise CompensationError(job_id, str(e)) from e

        logger.info(f"Refunded {cost} cents to user {user_id} for job {job_id}: {reason}")
        return True

    def _load_job(self, session, job_id: int):
        stmt = select(PrintJob).where(PrintJob.id == job_id)
        if self.store.supports_row_locks:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()
