"""Achievement catalog and unlock evaluation.

The catalog is a fixed list of six definitions keyed by title.  Persisted
achievements are a sparse set of overrides: whatever the store holds for a
title replaces the default, everything else is materialised locked.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .budget_stats import total_spent
from .models import Achievement, AchievementCriteria, Budget, Expense, Goal, UnlockEvent

logger = logging.getLogger(__name__)

DEFAULT_ACHIEVEMENTS: Tuple[Achievement, ...] = (
    Achievement(
        title='First Expense',
        description='Record your first expense',
        icon='🎯',
        type='budget',
        criteria=AchievementCriteria('expense_count', 1),
    ),
    Achievement(
        title='Spending Tracker',
        description='Record 10 expenses',
        icon='📊',
        type='budget',
        criteria=AchievementCriteria('expense_count', 10),
    ),
    Achievement(
        title='Budget Master',
        description='Stay within budget for a month',
        icon='👑',
        type='budget',
        criteria=AchievementCriteria('budget_streak', 1),
    ),
    Achievement(
        title='Goal Setter',
        description='Complete your first financial goal',
        icon='🏆',
        type='goals',
        criteria=AchievementCriteria('goal_completion', 1),
    ),
    Achievement(
        title='Savings Champion',
        description='Save $1000 in total',
        icon='💰',
        type='savings',
        criteria=AchievementCriteria('savings_amount', 1000),
    ),
    Achievement(
        title='Financial Guru',
        description='Complete 5 financial goals',
        icon='🌟',
        type='goals',
        criteria=AchievementCriteria('goal_completion', 5),
    ),
)


def default_achievements(user_id: Optional[str] = None) -> List[Achievement]:
    """Fresh, locked copies of the catalog for ``user_id``."""
    return [
        replace(
            ach,
            user_id=user_id,
            criteria=replace(ach.criteria, current_value=0.0),
            is_unlocked=False,
            unlocked_at=None,
        )
        for ach in DEFAULT_ACHIEVEMENTS
    ]


def merge_achievements(user_id: str, persisted: Iterable[Achievement]) -> List[Achievement]:
    """Join the catalog with persisted overrides by title.

    Catalog order is preserved.  Persisted entries whose title is not in the
    catalog are dropped.  When several persisted documents share a title an
    unlocked one wins, so a duplicate locked copy can never hide an unlock.
    """
    by_title: Dict[str, Achievement] = {}
    for ach in persisted:
        current = by_title.get(ach.title)
        if current is None or (ach.is_unlocked and not current.is_unlocked):
            by_title[ach.title] = ach

    return [
        by_title.get(default.title, default)
        for default in default_achievements(user_id)
    ]


def criteria_values(
    goals: Sequence[Goal],
    expenses: Sequence[Expense],
    budget: Optional[Budget],
) -> Dict[str, float]:
    """Live aggregate for each criterion type.

    ``budget_streak`` is only present when there is a budget and at least one
    expense; without it the criterion keeps its previous value.
    """
    values: Dict[str, float] = {
        'expense_count': float(len(expenses)),
        'goal_completion': float(sum(1 for goal in goals if goal.status == 'completed')),
        'savings_amount': float(sum(goal.current_amount for goal in goals)),
    }
    if budget is not None and expenses:
        values['budget_streak'] = 1.0 if total_spent(expenses) <= budget.total_budget else 0.0
    return values


def evaluate_achievements(
    achievements: Sequence[Achievement],
    goals: Sequence[Goal],
    expenses: Sequence[Expense],
    budget: Optional[Budget],
    now: Optional[datetime] = None,
) -> Tuple[List[Achievement], List[UnlockEvent]]:
    """Recompute criteria and unlock whatever has been reached.

    Args:
        achievements: Current (merged) achievement list.
        goals: All of the owner's goals.
        expenses: Expenses for the current period.
        budget: Current budget, if any.
        now: Unlock timestamp; defaults to ``datetime.now()``.

    Returns:
        ``(achievements, events)``: a new list in the same order, and one
        :class:`UnlockEvent` per achievement unlocked by this pass.  Entries
        that are already unlocked are returned unchanged; nothing is ever
        locked again.
    """
    now = now or datetime.now()
    values = criteria_values(goals, expenses, budget)

    updated: List[Achievement] = []
    events: List[UnlockEvent] = []
    for ach in achievements:
        if ach.is_unlocked:
            updated.append(ach)
            continue

        current = values.get(ach.criteria.type)
        if current is None:
            updated.append(ach)
            continue

        criteria = replace(ach.criteria, current_value=current)
        if current >= ach.criteria.target_value:
            unlocked = replace(ach, criteria=criteria, is_unlocked=True, unlocked_at=now)
            events.append(UnlockEvent(achievement=unlocked, current_value=current, unlocked_at=now))
            logger.info("Achievement unlocked: %s (%s=%s)", ach.title, ach.criteria.type, current)
            updated.append(unlocked)
        else:
            updated.append(replace(ach, criteria=criteria))

    return updated, events


def unlocked_achievements(achievements: Iterable[Achievement]) -> List[Achievement]:
    return [ach for ach in achievements if ach.is_unlocked]
