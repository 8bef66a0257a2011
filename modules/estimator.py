"""Cost and spend-limit arithmetic for print jobs.

Pure functions over integers (minor currency units). The ledger calls these
inside its transactions; nothing here touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from core.exceptions import (
    InsufficientBalanceError,
    MonthlyLimitExceededError,
    YearlyLimitExceededError,
)


@dataclass(frozen=True)
class PricingSettings:
    """Per-page prices in cents. Color pages replace, not add to, the base price."""

    per_page_cents: int
    color_page_cents: int

    def page_price(self, is_color: bool) -> int:
        return self.color_page_cents if is_color else self.per_page_cents


def compute_cost(pages: int, is_color: bool, pricing: PricingSettings) -> int:
    """Linear cost: pages times the applicable page price."""
    if pages < 1:
        raise ValueError(f"pages must be >= 1, got {pages}")
    return pages * pricing.page_price(is_color)


@dataclass(frozen=True)
class LimitCheck:
    """
    Which constraints a debit of ``cost_cents`` would violate.

    A limit of 0 means unlimited.
    """

    cost_cents: int
    balance_cents: int
    month_spent_cents: int
    year_spent_cents: int
    monthly_limit_cents: int
    yearly_limit_cents: int

    @property
    def insufficient_balance(self) -> bool:
        return self.balance_cents < self.cost_cents

    @property
    def would_exceed_monthly(self) -> bool:
        return self.monthly_limit_cents > 0 and self.month_spent_cents + self.cost_cents > self.monthly_limit_cents

    @property
    def would_exceed_yearly(self) -> bool:
        return self.yearly_limit_cents > 0 and self.year_spent_cents + self.cost_cents > self.yearly_limit_cents

    @property
    def ok(self) -> bool:
        return not (self.insufficient_balance or self.would_exceed_monthly or self.would_exceed_yearly)

    def raise_for_violation(self, user_id: Optional[int] = None) -> None:
        """
        Raise the first violated constraint, checked balance -> monthly -> yearly.

        Raises:
            InsufficientBalanceError
            MonthlyLimitExceededError
            YearlyLimitExceededError
        """
        if self.insufficient_balance:
            raise InsufficientBalanceError(self.cost_cents, self.balance_cents, user_id)
        if self.would_exceed_monthly:
            raise MonthlyLimitExceededError(
                self.cost_cents, self.monthly_limit_cents - self.month_spent_cents, user_id
            )
        if self.would_exceed_yearly:
            raise YearlyLimitExceededError(
                self.cost_cents, self.yearly_limit_cents - self.year_spent_cents, user_id
            )


def check_limits(cost_cents: int, account: Any) -> LimitCheck:
    """
    Evaluate constraints for an account-like object.

    ``account`` needs the balance, spent and limit ``*_cents`` attributes
    of models.entities.Account (an ORM row or an in-memory snapshot).
    """
    return LimitCheck(
        cost_cents=cost_cents,
        balance_cents=account.balance_cents,
        month_spent_cents=account.month_spent_cents,
        year_spent_cents=account.year_spent_cents,
        monthly_limit_cents=account.monthly_limit_cents,
        yearly_limit_cents=account.yearly_limit_cents,
    )

