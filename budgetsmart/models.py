"""Entity and derived-statistic types.

Entities mirror the documents kept in the store (budgets, expenses, income
sources, goals, achievements, posts, contributions).  Derived types are the
outputs of the aggregators in :mod:`budgetsmart.budget_stats`,
:mod:`budgetsmart.progress` and :mod:`budgetsmart.posts`.

All timestamps are naive or aware :class:`datetime.datetime` values supplied
by the caller; the aggregators never read the clock themselves unless a
``now``/``period`` argument is omitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional

BUDGET_MODES = ('student', 'worker', 'custom')
INTERVAL_UNITS = ('days', 'weeks', 'months')
INCOME_FREQUENCIES = ('weekly', 'monthly', 'yearly', 'one-time')
GOAL_PRIORITIES = ('low', 'medium', 'high')
GOAL_STATUSES = ('active', 'completed', 'paused')
ACHIEVEMENT_TYPES = ('budget', 'savings', 'goals', 'streaks')
CRITERIA_TYPES = ('expense_count', 'savings_amount', 'budget_streak', 'goal_completion')
POST_STATUSES = ('pending', 'approved', 'rejected')
POST_SORT_FIELDS = ('created_at', 'approved_at', 'likes', 'views')
SORT_DIRECTIONS = ('asc', 'desc')


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


# ---------------------------------------------------------------------------
# Budget entities
# ---------------------------------------------------------------------------


@dataclass
class Category:
    id: str
    name: str
    allocated_amount: float
    color: Optional[str] = None
    icon: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'allocated_amount': self.allocated_amount,
            'color': self.color,
            'icon': self.icon,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Category':
        return cls(
            id=str(data['id']),
            name=str(data.get('name', '')),
            allocated_amount=float(data.get('allocated_amount') or 0.0),
            color=data.get('color'),
            icon=data.get('icon'),
        )


@dataclass
class Budget:
    user_id: str
    total_budget: float
    mode: str
    month: str
    categories: List[Category] = field(default_factory=list)
    interval_unit: str = 'months'
    interval_value: int = 1
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    def category(self, category_id: str) -> Optional[Category]:
        return next((cat for cat in self.categories if cat.id == category_id), None)

    @property
    def total_allocated(self) -> float:
        return sum(cat.allocated_amount for cat in self.categories)

    def with_categories(self, categories: List[Category]) -> 'Budget':
        return replace(self, categories=list(categories))


@dataclass
class Expense:
    id: str
    name: str
    amount: float
    category_id: str
    date: datetime
    created_at: Optional[datetime] = None
    notes: Optional[str] = None
    month: Optional[str] = None


@dataclass
class IncomeSource:
    id: str
    name: str
    amount: float
    frequency: str
    color: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Progress entities
# ---------------------------------------------------------------------------


@dataclass
class Goal:
    id: str
    user_id: str
    title: str
    target_amount: float
    category: str
    deadline: Optional[datetime]
    current_amount: float = 0.0
    priority: str = 'medium'
    status: str = 'active'
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def progress_percentage(self) -> float:
        if self.target_amount <= 0:
            return 0.0
        return min(self.current_amount / self.target_amount * 100.0, 100.0)

    @property
    def remaining_amount(self) -> float:
        return max(self.target_amount - self.current_amount, 0.0)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        if self.deadline is None:
            return False
        return self.status != 'completed' and now > self.deadline


@dataclass
class AchievementCriteria:
    type: str
    target_value: float
    current_value: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'target_value': self.target_value,
            'current_value': self.current_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AchievementCriteria':
        return cls(
            type=str(data['type']),
            target_value=float(data.get('target_value') or 0.0),
            current_value=float(data.get('current_value') or 0.0),
        )


@dataclass
class Achievement:
    title: str
    description: str
    icon: str
    type: str
    criteria: AchievementCriteria
    user_id: Optional[str] = None
    is_unlocked: bool = False
    unlocked_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class UnlockEvent:
    """An achievement that flipped to unlocked during one evaluation pass."""

    achievement: Achievement
    current_value: float
    unlocked_at: datetime


# ---------------------------------------------------------------------------
# Learn-finance entities
# ---------------------------------------------------------------------------


@dataclass
class FinancePost:
    id: str
    title: str
    content: str
    category: str
    author_id: str
    author_name: str
    tags: List[str] = field(default_factory=list)
    status: str = 'pending'
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    likes: int = 0
    views: int = 0
    featured: bool = False
    rejection_reason: Optional[str] = None


@dataclass
class UserContribution:
    user_id: str
    total_submissions: int = 0
    approved_posts: int = 0
    total_likes: int = 0
    badges: List[str] = field(default_factory=list)
    joined_at: Optional[datetime] = None


@dataclass
class PostFilters:
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    search: Optional[str] = None
    status: Optional[str] = None
    author_id: Optional[str] = None
    featured: Optional[bool] = None


@dataclass
class PostSort:
    field: str = 'created_at'
    direction: str = 'desc'

    def __post_init__(self) -> None:
        if self.field not in POST_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{self.field}'")
        if self.direction not in SORT_DIRECTIONS:
            raise ValueError(f"Unsupported sort direction '{self.direction}'")


# ---------------------------------------------------------------------------
# Derived statistics
# ---------------------------------------------------------------------------


@dataclass
class CategoryBreakdown:
    category_id: str
    category_name: str
    spent: float
    allocated: float
    percentage: float

    @property
    def remaining(self) -> float:
        return self.allocated - self.spent


@dataclass
class BudgetStats:
    total_spent: float
    total_budget: float
    remaining_budget: float
    percentage_used: float
    category_breakdown: List[CategoryBreakdown] = field(default_factory=list)

    @property
    def is_over_budget(self) -> bool:
        return self.remaining_budget < 0

    def breakdown_for(self, category_id: str) -> Optional[CategoryBreakdown]:
        return next(
            (row for row in self.category_breakdown if row.category_id == category_id),
            None,
        )


@dataclass
class TrendCategory:
    category_id: str
    category_name: str
    amount: float
    color: str


@dataclass
class ExpenseTrend:
    month: str
    amount: float
    category_breakdown: List[TrendCategory] = field(default_factory=list)


@dataclass
class ProgressStats:
    total_goals: int
    completed_goals: int
    active_goals: int
    total_savings: float
    monthly_trends: List[ExpenseTrend]
    goal_completion_rate: float
    average_monthly_spending: float
    top_category: str
    achievements_unlocked: int = 0


@dataclass
class AdminStats:
    total_posts: int
    pending_posts: int
    approved_posts: int
    rejected_posts: int
    total_users: int
    posts_today: int
    likes_today: int
