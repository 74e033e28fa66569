"""Goal progress and spending analytics."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Sequence

import pandas as pd

from .budget_stats import expenses_frame
from .config import DEFAULT_CATEGORY_COLOR
from .formatting import period_key
from .models import (
    Achievement,
    Budget,
    Expense,
    ExpenseTrend,
    Goal,
    ProgressStats,
    TrendCategory,
)

NO_DATA = 'No data'


def apply_goal_progress(goal: Goal, amount: float, now: Optional[datetime] = None) -> Goal:
    """Return ``goal`` with ``amount`` added to its current amount.

    The new amount is clamped at the target.  Reaching the target marks the
    goal completed; otherwise it is (re)marked active.  A goal that is already
    completed stays completed.
    """
    new_amount = min(goal.current_amount + amount, goal.target_amount)
    if goal.status == 'completed' or new_amount >= goal.target_amount:
        status = 'completed'
    else:
        status = 'active'
    return replace(
        goal,
        current_amount=new_amount,
        status=status,
        updated_at=now or datetime.now(),
    )


def toggle_goal_status(goal: Goal, now: Optional[datetime] = None) -> Goal:
    """Flip an active goal to paused and back.  Completed goals are left alone."""
    if goal.status == 'completed':
        return goal
    status = 'paused' if goal.status == 'active' else 'active'
    return replace(goal, status=status, updated_at=now or datetime.now())


def current_period_trend(
    expenses: Sequence[Expense],
    budget: Budget,
    period: str,
) -> ExpenseTrend:
    """Spending for ``period`` with a per-category breakdown.

    Only expenses whose date falls inside the period count.  Categories are
    taken in budget order and those with no spend are dropped.
    """
    df = expenses_frame(expenses)
    if not df.empty:
        df = df[df['date'].dt.strftime('%Y-%m') == period]

    grouped = df.groupby('category_id', sort=False)['amount'].sum() if not df.empty else pd.Series(dtype=float)
    breakdown: List[TrendCategory] = []
    for cat in budget.categories:
        amount = float(grouped.get(cat.id, 0.0))
        if amount > 0:
            breakdown.append(
                TrendCategory(
                    category_id=cat.id,
                    category_name=cat.name,
                    amount=amount,
                    color=cat.color or DEFAULT_CATEGORY_COLOR,
                )
            )

    return ExpenseTrend(
        month=period,
        amount=float(df['amount'].sum()) if not df.empty else 0.0,
        category_breakdown=breakdown,
    )


def top_category(trends: Sequence[ExpenseTrend]) -> str:
    """Highest-spend category of the first trend; first one wins a tie."""
    if not trends or not trends[0].category_breakdown:
        return NO_DATA
    top = trends[0].category_breakdown[0]
    for cat in trends[0].category_breakdown[1:]:
        if cat.amount > top.amount:
            top = cat
    return top.category_name


def calculate_progress_stats(
    goals: Sequence[Goal],
    expenses: Sequence[Expense],
    budget: Optional[Budget],
    achievements: Sequence[Achievement] = (),
    period: Optional[str] = None,
) -> ProgressStats:
    """Aggregate goal and spending figures for the progress page.

    Args:
        goals: All of the owner's goals.
        expenses: Expenses for the current period.
        budget: Current budget; the spending trend is only built with one.
        achievements: Merged achievement list, used for the unlocked count.
        period: Period key of the trend entry; defaults to the current month.

    Returns:
        A :class:`ProgressStats`.  ``monthly_trends`` holds at most one entry
        (the current period), so ``average_monthly_spending`` is the total
        expense sum divided by ``max(len(monthly_trends), 1)``.
    """
    period = period or period_key()

    total_goals = len(goals)
    completed_goals = sum(1 for goal in goals if goal.status == 'completed')
    active_goals = sum(1 for goal in goals if goal.status == 'active')
    total_savings = float(sum(goal.current_amount for goal in goals))

    monthly_trends: List[ExpenseTrend] = []
    if budget is not None and expenses:
        monthly_trends.append(current_period_trend(expenses, budget, period))

    goal_completion_rate = (completed_goals / total_goals * 100.0) if total_goals > 0 else 0.0
    expense_total = float(sum(exp.amount for exp in expenses))
    average_monthly_spending = (
        expense_total / max(len(monthly_trends), 1) if expenses else 0.0
    )

    return ProgressStats(
        total_goals=total_goals,
        completed_goals=completed_goals,
        active_goals=active_goals,
        total_savings=total_savings,
        monthly_trends=monthly_trends,
        goal_completion_rate=goal_completion_rate,
        average_monthly_spending=average_monthly_spending,
        top_category=top_category(monthly_trends),
        achievements_unlocked=sum(1 for ach in achievements if ach.is_unlocked),
    )


def expense_trends(stats: Optional[ProgressStats]) -> List[ExpenseTrend]:
    return list(stats.monthly_trends) if stats is not None else []


def goal_status_counts(goals: Sequence[Goal]) -> pd.Series:
    """Number of goals per status, in ``active, completed, paused`` order."""
    counts = pd.Series([goal.status for goal in goals], dtype=object).value_counts()
    return counts.reindex(['active', 'completed', 'paused'], fill_value=0).astype(int)


def savings_to_spending_ratio(stats: ProgressStats) -> float:
    """Total savings as a percentage of average monthly spending."""
    return stats.total_savings / (stats.average_monthly_spending or 1.0) * 100.0
