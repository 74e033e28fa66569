"""Input validation applied before anything is written to the store.

Every validator raises :class:`~budgetsmart.errors.ValidationError` with a
message describing the violated constraint; the message is meant to be shown
to the user unchanged.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

from .budget_stats import BudgetSnapshot
from .errors import ValidationError
from .formatting import format_currency
from .models import (
    BUDGET_MODES,
    GOAL_PRIORITIES,
    INCOME_FREQUENCIES,
    INTERVAL_UNITS,
    Category,
)
from .posts import FINANCE_CATEGORIES

MAX_TITLE_LENGTH = 100
MAX_CONTENT_LENGTH = 2000
MAX_TAGS = 5
MAX_TAG_LENGTH = 20


def _require(value: object, field: str, label: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{label} is required.", field=field)


def validate_amount(amount: object, field: str = 'amount') -> float:
    """Coerce ``amount`` to a finite float greater than zero."""
    try:
        value = float(amount)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number.", field=field) from None
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Amount must be more than 0.", field=field)
    return value


def validate_expense(
    snapshot: BudgetSnapshot,
    name: str,
    amount: object,
    category_id: str,
) -> float:
    """Check a new expense against the remaining category and period budget.

    Both remaining figures come from ``snapshot`` so they agree with the stats
    the user is looking at.

    Returns:
        The validated amount as a float.
    """
    if not name or not str(name).strip() or amount in (None, '') or not category_id:
        raise ValidationError("Please fill in the name, amount and category.")
    value = validate_amount(amount)

    if snapshot.budget is None:
        raise ValidationError("Set up a budget before adding expenses.")

    category_name = snapshot.category_name(category_id)
    remaining_category = snapshot.category_remaining(category_id)
    if remaining_category <= 0:
        raise ValidationError(
            f"You have already used all of your {category_name} budget.",
            field='category_id',
        )
    if value > remaining_category:
        raise ValidationError(
            f"This expense is higher than your remaining {category_name} budget "
            f"({format_currency(max(remaining_category, 0))} left). "
            "Please lower the amount or choose another category.",
            field='amount',
        )

    remaining_total = snapshot.budget_remaining()
    if remaining_total <= 0:
        raise ValidationError("You have already used all of your budget for this period.")
    if value > remaining_total:
        raise ValidationError(
            "This expense is higher than your remaining budget for this period "
            f"({format_currency(max(remaining_total, 0))} left). Please lower the amount.",
            field='amount',
        )
    return value


def validate_budget(
    total_budget: object,
    mode: str,
    categories: Sequence[Category],
    interval_unit: str = 'months',
    interval_value: int = 1,
) -> float:
    try:
        total = float(total_budget)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError("Total budget must be a number.", field='total_budget') from None
    if not math.isfinite(total) or total < 0:
        raise ValidationError("Total budget cannot be negative.", field='total_budget')
    if mode not in BUDGET_MODES:
        raise ValidationError(f"Unknown budget mode '{mode}'.", field='mode')
    if interval_unit not in INTERVAL_UNITS:
        raise ValidationError(f"Unknown interval unit '{interval_unit}'.", field='interval_unit')
    if int(interval_value) < 1:
        raise ValidationError("Interval must be at least 1.", field='interval_value')
    seen = set()
    for category in categories:
        validate_category(category)
        if category.id in seen:
            raise ValidationError(f"Duplicate category id '{category.id}'.", field='categories')
        seen.add(category.id)
    return total


def validate_category(category: Category) -> None:
    _require(category.name, 'name', 'Category name')
    if category.allocated_amount < 0:
        raise ValidationError(
            f"Allocated amount for {category.name} cannot be negative.",
            field='allocated_amount',
        )


def validate_goal(title: str, target_amount: object, category: str, priority: str = 'medium') -> float:
    if not title or not str(title).strip() or not target_amount or not category:
        raise ValidationError("Please fill in the title, target amount and category.")
    target = validate_amount(target_amount, field='target_amount')
    if priority not in GOAL_PRIORITIES:
        raise ValidationError(f"Unknown priority '{priority}'.", field='priority')
    return target


def validate_income_source(name: str, amount: object, frequency: str) -> float:
    _require(name, 'name', 'Income name')
    value = validate_amount(amount)
    if frequency not in INCOME_FREQUENCIES:
        raise ValidationError(f"Unknown income frequency '{frequency}'.", field='frequency')
    return value


def clean_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Strip, de-duplicate and bound the tag list."""
    cleaned: List[str] = []
    for tag in tags or []:
        tag = str(tag).strip()
        if not tag or tag in cleaned:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(
                f"Tags can be at most {MAX_TAG_LENGTH} characters ('{tag}').",
                field='tags',
            )
        cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValidationError(f"Add at most {MAX_TAGS} tags.", field='tags')
    return cleaned


def validate_post(title: str, content: str, category: str, tags: Optional[Iterable[str]] = None) -> List[str]:
    """Validate a post submission and return its cleaned tag list."""
    _require(title, 'title', 'Title')
    _require(content, 'content', 'Content')
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title can be at most {MAX_TITLE_LENGTH} characters.", field='title')
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content can be at most {MAX_CONTENT_LENGTH} characters.", field='content')
    if category not in FINANCE_CATEGORIES:
        raise ValidationError(f"Unknown post category '{category}'.", field='category')
    return clean_tags(tags)


def validate_rejection_reason(reason: str) -> str:
    _require(reason, 'reason', 'A rejection reason')
    return reason.strip()
