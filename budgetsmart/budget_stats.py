"""Budget statistics for a single owner and period.

The functions here turn a budget document and the expenses recorded against
its period into :class:`~budgetsmart.models.BudgetStats`.  Everything is
recomputed from scratch on every call; callers that want the stats and the
remaining-budget helpers to agree should go through :class:`BudgetSnapshot`,
which captures one expense list and answers every question from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import UNKNOWN_CATEGORY
from .models import Budget, BudgetStats, CategoryBreakdown, Expense, IncomeSource

EXPENSE_COLUMNS = ['id', 'name', 'amount', 'category_id', 'date', 'created_at', 'month']


def expenses_frame(expenses: Iterable[Expense]) -> pd.DataFrame:
    """Build a DataFrame view over ``expenses``.

    The frame always carries :data:`EXPENSE_COLUMNS`, even when empty, so
    downstream ``groupby`` calls need no special casing.  ``amount`` is
    coerced to float and ``date`` to ``datetime64``.
    """
    rows = [
        {
            'id': exp.id,
            'name': exp.name,
            'amount': exp.amount,
            'category_id': exp.category_id,
            'date': exp.date,
            'created_at': exp.created_at,
            'month': exp.month,
        }
        for exp in expenses
    ]
    df = pd.DataFrame(rows, columns=EXPENSE_COLUMNS)
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0).astype(float)
    df['date'] = pd.to_datetime(df['date'])
    return df


def spent_by_category(expenses: Iterable[Expense]) -> pd.Series:
    """Total spend per category id (dangling ids included)."""
    df = expenses_frame(expenses)
    if df.empty:
        return pd.Series(dtype=float)
    return df.groupby('category_id', sort=False)['amount'].sum()


def total_spent(expenses: Iterable[Expense]) -> float:
    return float(sum(exp.amount for exp in expenses))


def _percentage(numerator: float, denominator: float) -> float:
    return (numerator / denominator * 100.0) if denominator > 0 else 0.0


def calculate_budget_stats(
    budget: Optional[Budget],
    expenses: Sequence[Expense],
) -> Optional[BudgetStats]:
    """Derive spent/remaining/percentage figures for ``budget``.

    Args:
        budget: The owner's budget for the period, or ``None`` when it has
            not been set up yet.
        expenses: Expenses recorded for the same period.

    Returns:
        ``None`` when there is no budget, otherwise the stats.  Remaining
        budget is allowed to go negative; percentages are 0 whenever the
        denominator is 0.

    Example:
        >>> budget = Budget('u1', 1000, 'custom', '2024-01',
        ...                 [Category('c1', 'Food', 400)])
        >>> stats = calculate_budget_stats(budget, [
        ...     Expense('e1', 'Lunch', 150, 'c1', datetime(2024, 1, 3)),
        ...     Expense('e2', 'Dinner', 100, 'c1', datetime(2024, 1, 4))])
        >>> stats.remaining_budget, stats.percentage_used
        (750.0, 25.0)
    """
    if budget is None:
        return None

    spent_total = total_spent(expenses)
    grouped = spent_by_category(expenses)

    if budget.categories:
        allocated = np.array([cat.allocated_amount for cat in budget.categories], dtype=float)
        spent = np.array(
            [float(grouped.get(cat.id, 0.0)) for cat in budget.categories],
            dtype=float,
        )
        denominators = np.where(allocated > 0, allocated, 1.0)
        percentages = np.where(allocated > 0, spent / denominators * 100.0, 0.0)
    else:
        allocated = spent = percentages = np.array([], dtype=float)

    breakdown = [
        CategoryBreakdown(
            category_id=cat.id,
            category_name=cat.name,
            spent=float(spent[idx]),
            allocated=float(allocated[idx]),
            percentage=float(percentages[idx]),
        )
        for idx, cat in enumerate(budget.categories)
    ]

    total_budget = float(budget.total_budget)
    return BudgetStats(
        total_spent=spent_total,
        total_budget=total_budget,
        remaining_budget=total_budget - spent_total,
        percentage_used=_percentage(spent_total, total_budget),
        category_breakdown=breakdown,
    )


def category_remaining(
    budget: Optional[Budget],
    expenses: Iterable[Expense],
    category_id: str,
) -> float:
    """Allocated amount of ``category_id`` minus what has been spent on it.

    Returns 0 when there is no budget or the category does not exist.
    """
    if budget is None:
        return 0.0
    category = budget.category(category_id)
    if category is None:
        return 0.0
    spent = sum(exp.amount for exp in expenses if exp.category_id == category_id)
    return category.allocated_amount - spent


def budget_remaining(budget: Optional[Budget], expenses: Iterable[Expense]) -> float:
    """Period total minus all spend; may be negative, 0 without a budget."""
    if budget is None:
        return 0.0
    return budget.total_budget - total_spent(expenses)


def resolve_category_name(budget: Optional[Budget], category_id: str) -> str:
    category = budget.category(category_id) if budget is not None else None
    return category.name if category is not None else UNKNOWN_CATEGORY


def spending_by_day(expenses: Iterable[Expense]) -> pd.Series:
    """Daily spend indexed by calendar day, oldest first."""
    df = expenses_frame(expenses)
    if df.empty:
        return pd.Series(dtype=float, name='amount')
    days = df['date'].dt.normalize()
    daily = df.groupby(days)['amount'].sum().sort_index()
    daily.index.name = 'date'
    return daily


def monthly_income(sources: Iterable[IncomeSource]) -> float:
    """Income normalised to a monthly figure.

    Weekly amounts count 52 times a year, yearly amounts are spread over
    twelve months and one-time income is left out.
    """
    factors = {'weekly': 52 / 12, 'monthly': 1.0, 'yearly': 1 / 12}
    return float(sum(src.amount * factors.get(src.frequency, 0.0) for src in sources))


@dataclass(frozen=True)
class BudgetSnapshot:
    """One consistent view of a budget and its period's expenses.

    Form validation and the stats pass should both read from the same
    snapshot; a write landing in between produces a new snapshot rather than
    changing this one.
    """

    budget: Optional[Budget]
    expenses: Tuple[Expense, ...] = field(default_factory=tuple)

    @classmethod
    def capture(cls, budget: Optional[Budget], expenses: Iterable[Expense]) -> 'BudgetSnapshot':
        return cls(budget=budget, expenses=tuple(expenses))

    @property
    def stats(self) -> Optional[BudgetStats]:
        return calculate_budget_stats(self.budget, self.expenses)

    @property
    def needs_setup(self) -> bool:
        return self.budget is None

    def category_remaining(self, category_id: str) -> float:
        return category_remaining(self.budget, self.expenses, category_id)

    def budget_remaining(self) -> float:
        return budget_remaining(self.budget, self.expenses)

    def category_name(self, category_id: str) -> str:
        return resolve_category_name(self.budget, category_id)

    def expenses_with_category_names(self) -> List[Tuple[Expense, str]]:
        return [(exp, self.category_name(exp.category_id)) for exp in self.expenses]
