"""Filtering, sorting and moderation views over learn-finance posts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import AdminStats, FinancePost, PostFilters, PostSort

FINANCE_CATEGORIES: Dict[str, Dict[str, str]] = {
    'budgeting': {'label': 'Budgeting Tips', 'icon': '📊', 'color': '#3b82f6'},
    'saving': {'label': 'Saving Strategies', 'icon': '🏦', 'color': '#10b981'},
    'investing': {'label': 'Investment Basics', 'icon': '📈', 'color': '#8b5cf6'},
    'debt': {'label': 'Debt Management', 'icon': '💳', 'color': '#ef4444'},
    'career': {'label': 'Career & Income', 'icon': '💼', 'color': '#f59e0b'},
    'student': {'label': 'Student Finance', 'icon': '🎓', 'color': '#06b6d4'},
    'emergency': {'label': 'Emergency Planning', 'icon': '🛡️', 'color': '#84cc16'},
    'general': {'label': 'General Tips', 'icon': '💡', 'color': '#6b7280'},
}

DATE_SORT_FIELDS = {'created_at', 'approved_at'}


def _matches(post: FinancePost, filters: PostFilters) -> bool:
    if filters.category and post.category != filters.category:
        return False
    if filters.tags and not any(tag in filters.tags for tag in post.tags):
        return False
    if filters.search:
        needle = filters.search.lower()
        if needle not in post.title.lower() and needle not in post.content.lower():
            return False
    if filters.status and post.status != filters.status:
        return False
    if filters.author_id and post.author_id != filters.author_id:
        return False
    if filters.featured is not None and post.featured != filters.featured:
        return False
    return True


def _sort_key(value: Any) -> Optional[float]:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def sort_posts(posts: Iterable[FinancePost], sort: PostSort) -> List[FinancePost]:
    """Sort by instant for date fields and numerically for counters.

    Posts without a value for the sort field (e.g. unapproved posts when
    sorting by ``approved_at``) keep their relative place after the sorted
    ones; ties keep collection order.
    """
    keyed = [(post, _sort_key(getattr(post, sort.field))) for post in posts]
    present = [item for item in keyed if item[1] is not None]
    missing = [post for post, key in keyed if key is None]
    present.sort(key=lambda item: item[1], reverse=sort.direction == 'desc')
    return [post for post, _ in present] + missing


def filter_posts(
    posts: Iterable[FinancePost],
    filters: Optional[PostFilters] = None,
    sort: Optional[PostSort] = None,
) -> List[FinancePost]:
    """Return a filtered, sorted copy of ``posts``.

    All given filters must match (logical AND).  ``tags`` matches when the
    post carries any of them; ``search`` is a case-insensitive substring test
    over title and content.
    """
    filters = filters or PostFilters()
    sort = sort or PostSort()
    matched = [post for post in posts if _matches(post, filters)]
    return sort_posts(matched, sort)


def pending_posts(posts: Iterable[FinancePost]) -> List[FinancePost]:
    return [post for post in posts if post.status == 'pending']


def featured_posts(posts: Iterable[FinancePost]) -> List[FinancePost]:
    return [post for post in posts if post.featured and post.status == 'approved']


def user_posts(posts: Iterable[FinancePost], user_id: str) -> List[FinancePost]:
    return [post for post in posts if post.author_id == user_id]


def calculate_admin_stats(
    posts: Sequence[FinancePost],
    today: Optional[date] = None,
) -> AdminStats:
    """Moderation dashboard counters.

    "Today" starts at local midnight of ``today`` (default: the current
    date).  The user count is the number of distinct authors.
    """
    today = today or date.today()
    midnight = datetime(today.year, today.month, today.day)
    todays = [
        post for post in posts
        if post.created_at is not None and post.created_at.replace(tzinfo=None) >= midnight
    ]
    return AdminStats(
        total_posts=len(posts),
        pending_posts=sum(1 for post in posts if post.status == 'pending'),
        approved_posts=sum(1 for post in posts if post.status == 'approved'),
        rejected_posts=sum(1 for post in posts if post.status == 'rejected'),
        total_users=len({post.author_id for post in posts}),
        posts_today=len(todays),
        likes_today=sum(post.likes for post in todays),
    )


def category_label(category: str) -> str:
    return FINANCE_CATEGORIES.get(category, {}).get('label', category)


def excerpt(post: FinancePost, length: int = 150) -> str:
    """First ``length`` characters of the content, with an ellipsis if cut."""
    if len(post.content) <= length:
        return post.content
    return post.content[:length] + '...'
