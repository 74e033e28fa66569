"""Session-scoped services that tie the store to the aggregators.

Each service is constructed with an explicit :class:`Session` for the signed
in user; nothing reads an ambient "current user".  Reads go straight to the
store, derived figures are recomputed from the fresh snapshot on every call,
and writes are validated before the store is touched.

Store failures are logged here and re-raised as
:class:`~budgetsmart.errors.PersistenceError` with a generic message and are
not retried, except achievement unlocks (see
:meth:`ProgressService.check_and_unlock_achievements`).
"""

from __future__ import annotations

import logging
import random
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from . import config
from .achievements import evaluate_achievements, merge_achievements, unlocked_achievements
from .budget_stats import BudgetSnapshot
from .db import STORE_ERRORS, FinanceStore
from .errors import (
    AuthenticationError,
    NotAuthorizedError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .formatting import period_key
from .models import (
    GOAL_PRIORITIES,
    GOAL_STATUSES,
    Achievement,
    AdminStats,
    Budget,
    BudgetStats,
    Category,
    Expense,
    ExpenseTrend,
    FinancePost,
    Goal,
    IncomeSource,
    PostFilters,
    PostSort,
    ProgressStats,
    UnlockEvent,
    UserContribution,
)
from .posts import (
    calculate_admin_stats,
    featured_posts,
    filter_posts,
    pending_posts,
    user_posts,
)
from .progress import apply_goal_progress, calculate_progress_stats, toggle_goal_status
from .templates import default_learning_posts, generate_id, suggested_total, template_categories
from .validation import (
    validate_amount,
    validate_budget,
    validate_category,
    validate_expense,
    validate_goal,
    validate_income_source,
    validate_post,
    validate_rejection_reason,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

EDITABLE_POST_FIELDS = frozenset({'title', 'content', 'category', 'tags'})


@dataclass(frozen=True)
class Session:
    """The signed-in user every service call is scoped to."""

    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def author_name(self) -> str:
        return self.display_name or self.email or 'Anonymous'


@contextmanager
def _persisting(message: str) -> Iterator[None]:
    try:
        yield
    except STORE_ERRORS as exc:
        logger.error("%s: %s", message, exc)
        raise PersistenceError(message) from exc


class _SessionService:
    def __init__(self, session: Optional[Session], store: FinanceStore, clock: Optional[Clock] = None):
        self.session = session
        self.store = store
        self.clock: Clock = clock or datetime.now

    def _require_user(self) -> Session:
        if self.session is None:
            raise AuthenticationError('User not authenticated')
        return self.session

    @property
    def user_id(self) -> str:
        return self._require_user().user_id


class BudgetService(_SessionService):
    """Budget, category, expense and income operations for one user."""

    def current_month(self) -> str:
        return period_key(self.clock())

    # -- reads -------------------------------------------------------------

    def current_budget(self) -> Optional[Budget]:
        if self.session is None:
            return None
        with _persisting('Could not load your budget'):
            return self.store.fetch_budget(self.user_id, self.current_month())

    def expenses(self) -> List[Expense]:
        if self.session is None:
            return []
        with _persisting('Could not load your expenses'):
            return self.store.fetch_expenses(self.user_id, self.current_month())

    def income_sources(self) -> List[IncomeSource]:
        if self.session is None:
            return []
        with _persisting('Could not load your income sources'):
            return self.store.fetch_income_sources(self.user_id)

    def snapshot(self) -> BudgetSnapshot:
        return BudgetSnapshot.capture(self.current_budget(), self.expenses())

    def stats(self) -> Optional[BudgetStats]:
        return self.snapshot().stats

    def category_remaining(self, category_id: str) -> float:
        return self.snapshot().category_remaining(category_id)

    def budget_remaining(self) -> float:
        return self.snapshot().budget_remaining()

    # -- budget ------------------------------------------------------------

    def create_budget(
        self,
        total_budget: float,
        mode: str,
        categories: Iterable[Category],
        interval_unit: str = 'months',
        interval_value: int = 1,
    ) -> Budget:
        user_id = self.user_id
        categories = list(categories)
        total = validate_budget(total_budget, mode, categories, interval_unit, interval_value)
        month = self.current_month()
        budget = Budget(
            id=month,
            user_id=user_id,
            total_budget=total,
            mode=mode,
            month=month,
            categories=categories,
            interval_unit=interval_unit,
            interval_value=int(interval_value),
            created_at=self.clock(),
        )
        with _persisting('Could not save your budget'):
            self.store.save_budget(budget)
        return budget

    def create_budget_from_template(self, mode: str, total_budget: Optional[float] = None) -> Budget:
        """Create the period budget from a mode template.

        Without an explicit total the sum of the template allocations is used.
        """
        categories = template_categories(mode)
        total = suggested_total(categories) if total_budget is None else total_budget
        return self.create_budget(total, mode, categories)

    def _require_budget(self) -> Budget:
        budget = self.current_budget()
        if budget is None:
            raise NotFoundError('No budget available')
        return budget

    def update_budget(self, **updates: Any) -> None:
        self._require_user()
        budget = self._require_budget()
        if 'total_budget' in updates or 'mode' in updates or 'categories' in updates:
            validate_budget(
                updates.get('total_budget', budget.total_budget),
                updates.get('mode', budget.mode),
                updates.get('categories', budget.categories),
                updates.get('interval_unit', budget.interval_unit),
                updates.get('interval_value', budget.interval_value),
            )
        with _persisting('Could not update your budget'):
            self.store.update_budget(self.user_id, budget.month, updates)

    def add_category(
        self,
        name: str,
        allocated_amount: float,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Category:
        budget = self._require_budget()
        category = Category(
            id=generate_id(),
            name=name,
            allocated_amount=float(allocated_amount),
            color=color,
            icon=icon,
        )
        validate_category(category)
        self.update_budget(categories=budget.categories + [category])
        return category

    def update_category(self, category_id: str, **updates: Any) -> None:
        budget = self._require_budget()
        categories = [
            replace(cat, **updates) if cat.id == category_id else cat
            for cat in budget.categories
        ]
        self.update_budget(categories=categories)

    def delete_category(self, category_id: str) -> None:
        """Remove a category.  Expenses that reference it are kept."""
        budget = self._require_budget()
        categories = [cat for cat in budget.categories if cat.id != category_id]
        self.update_budget(categories=categories)

    def reset_monthly_budget(self) -> int:
        """Delete the period's expenses and refresh the budget timestamp.

        Returns:
            Number of expenses removed.
        """
        self._require_user()
        budget = self._require_budget()
        with _persisting('Could not reset your budget'):
            removed = self.store.delete_expenses_for_month(self.user_id, budget.month)
            self.store.update_budget(self.user_id, budget.month, {'created_at': self.clock()})
        logger.info("Reset budget %s for %s (%d expenses removed)", budget.month, self.user_id, removed)
        return removed

    # -- expenses ----------------------------------------------------------

    def add_expense(
        self,
        name: str,
        amount: float,
        category_id: str,
        date: Optional[datetime] = None,
        notes: Optional[str] = None,
        snapshot: Optional[BudgetSnapshot] = None,
    ) -> Expense:
        """Validate and record an expense for the current period.

        Args:
            snapshot: The snapshot the user was looking at when filling in the
                form.  When omitted a fresh one is captured; either way the
                category and period checks read from the same snapshot.
        """
        user_id = self.user_id
        snapshot = snapshot or self.snapshot()
        value = validate_expense(snapshot, name, amount, category_id)
        now = self.clock()
        expense = Expense(
            id=generate_id(),
            name=name.strip(),
            amount=value,
            category_id=category_id,
            date=date or now,
            notes=notes,
            month=self.current_month(),
            created_at=now,
        )
        with _persisting('Could not save this expense. Please try again.'):
            self.store.add_expense(user_id, expense)
        return expense

    def update_expense(self, expense_id: str, **updates: Any) -> None:
        user_id = self.user_id
        if 'amount' in updates:
            updates['amount'] = validate_amount(updates['amount'])
        with _persisting('Could not update this expense'):
            found = self.store.update_expense(user_id, expense_id, updates)
        if not found:
            raise NotFoundError(f"Expense '{expense_id}' not found")

    def delete_expense(self, expense_id: str) -> None:
        user_id = self.user_id
        with _persisting('Could not delete this expense'):
            self.store.delete_expense(user_id, expense_id)

    # -- income ------------------------------------------------------------

    def add_income_source(
        self,
        name: str,
        amount: float,
        frequency: str,
        color: Optional[str] = None,
    ) -> IncomeSource:
        user_id = self.user_id
        value = validate_income_source(name, amount, frequency)
        income = IncomeSource(
            id=generate_id(),
            name=name.strip(),
            amount=value,
            frequency=frequency,
            color=color,
            created_at=self.clock(),
        )
        with _persisting('Could not save this income source'):
            self.store.add_income_source(user_id, income)
        return income

    def update_income_source(self, income_id: str, **updates: Any) -> None:
        user_id = self.user_id
        if 'amount' in updates:
            updates['amount'] = validate_amount(updates['amount'])
        with _persisting('Could not update this income source'):
            found = self.store.update_income_source(user_id, income_id, updates)
        if not found:
            raise NotFoundError(f"Income source '{income_id}' not found")

    def delete_income_source(self, income_id: str) -> None:
        user_id = self.user_id
        with _persisting('Could not delete this income source'):
            self.store.delete_income_source(user_id, income_id)


class ProgressService(_SessionService):
    """Goals, achievements and progress analytics for one user."""

    def __init__(
        self,
        session: Optional[Session],
        store: FinanceStore,
        budgets: BudgetService,
        clock: Optional[Clock] = None,
    ):
        super().__init__(session, store, clock)
        self.budgets = budgets
        # Unlocks seen this session, kept even when persisting them failed.
        self._unlocked: Dict[str, Achievement] = {}
        self._unsaved: Dict[str, Achievement] = {}

    # -- goals ---------------------------------------------------------------

    def goals(self) -> List[Goal]:
        if self.session is None:
            return []
        with _persisting('Could not load your goals'):
            return self.store.fetch_goals(self.user_id)

    def _find_goal(self, goal_id: str) -> Optional[Goal]:
        return next((goal for goal in self.goals() if goal.id == goal_id), None)

    def create_goal(
        self,
        title: str,
        target_amount: float,
        category: str,
        deadline: datetime,
        priority: str = 'medium',
        description: Optional[str] = None,
    ) -> Goal:
        user_id = self.user_id
        target = validate_goal(title, target_amount, category, priority)
        now = self.clock()
        goal = Goal(
            id=generate_id(),
            user_id=user_id,
            title=title.strip(),
            description=description,
            target_amount=target,
            current_amount=0.0,
            category=category,
            deadline=deadline,
            priority=priority,
            status='active',
            created_at=now,
            updated_at=now,
        )
        with _persisting('Could not save this goal'):
            self.store.add_goal(goal)
        return goal

    def update_goal(self, goal_id: str, **updates: Any) -> None:
        """Edit a goal, keeping its current amount within the target.

        The current amount is clamped at the (possibly new) target and a goal
        that reaches its target is marked completed.  Completed goals cannot
        be reopened.
        """
        self._require_user()
        goal = self._find_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal '{goal_id}' not found")
        if 'status' in updates:
            if updates['status'] not in GOAL_STATUSES:
                raise ValidationError(f"Unknown goal status '{updates['status']}'.", field='status')
            if goal.status == 'completed' and updates['status'] != 'completed':
                raise ValidationError("A completed goal cannot be reopened.", field='status')
        if 'priority' in updates and updates['priority'] not in GOAL_PRIORITIES:
            raise ValidationError(f"Unknown priority '{updates['priority']}'.", field='priority')
        if 'target_amount' in updates:
            updates['target_amount'] = validate_amount(updates['target_amount'], field='target_amount')
        if 'current_amount' in updates:
            try:
                current = float(updates['current_amount'])
            except (TypeError, ValueError):
                raise ValidationError("Saved amount must be a number.", field='current_amount') from None
            if current < 0:
                raise ValidationError("Saved amount cannot be negative.", field='current_amount')
        else:
            current = goal.current_amount

        target = updates.get('target_amount', goal.target_amount)
        clamped = min(current, target)
        if 'current_amount' in updates or clamped != goal.current_amount:
            updates['current_amount'] = clamped
        if clamped >= target:
            updates['status'] = 'completed'
        self._write_goal(goal_id, updates)

    def _write_goal(self, goal_id: str, updates: Dict[str, Any]) -> None:
        updates['updated_at'] = self.clock()
        with _persisting('Could not update this goal'):
            found = self.store.update_goal(self.user_id, goal_id, updates)
        if not found:
            raise NotFoundError(f"Goal '{goal_id}' not found")

    def delete_goal(self, goal_id: str) -> None:
        user_id = self.user_id
        with _persisting('Could not delete this goal'):
            self.store.delete_goal(user_id, goal_id)

    def update_goal_progress(self, goal_id: str, amount: float) -> Optional[Goal]:
        """Add a contribution to a goal, clamped at its target.

        Returns the updated goal, or ``None`` when the goal does not exist.
        """
        value = validate_amount(amount)
        goal = self._find_goal(goal_id)
        if goal is None:
            logger.debug("Ignoring progress for unknown goal %s", goal_id)
            return None
        updated = apply_goal_progress(goal, value, now=self.clock())
        self._write_goal(goal_id, {'current_amount': updated.current_amount, 'status': updated.status})
        return updated

    def toggle_goal_status(self, goal_id: str) -> Optional[Goal]:
        goal = self._find_goal(goal_id)
        if goal is None:
            return None
        updated = toggle_goal_status(goal, now=self.clock())
        if updated is not goal:
            self._write_goal(goal_id, {'status': updated.status})
        return updated

    # -- achievements --------------------------------------------------------

    def achievements(self) -> List[Achievement]:
        """Catalog merged with persisted overrides and this session's unlocks."""
        if self.session is None:
            return []
        with _persisting('Could not load your achievements'):
            persisted = self.store.fetch_achievements(self.user_id)
        merged = merge_achievements(self.user_id, persisted)
        return [
            self._unlocked.get(ach.title, ach) if not ach.is_unlocked else ach
            for ach in merged
        ]

    def unlocked_achievements(self) -> List[Achievement]:
        return unlocked_achievements(self.achievements())

    def _save_unlock(self, achievement: Achievement) -> None:
        try:
            self.store.save_achievement(achievement)
        except STORE_ERRORS as exc:
            logger.error("Failed to unlock achievement %s: %s", achievement.title, exc)
            self._unsaved[achievement.title] = achievement
        else:
            self._unsaved.pop(achievement.title, None)

    def check_and_unlock_achievements(self) -> List[UnlockEvent]:
        """Evaluate every locked achievement against live aggregates.

        Newly reached achievements are flipped in memory first and then
        written to the store.  A failed write is logged, the in-memory
        unlock stands, and the write is attempted again on the next pass.
        """
        if self.session is None:
            return []
        for achievement in list(self._unsaved.values()):
            self._save_unlock(achievement)

        snapshot = self.budgets.snapshot()
        _, events = evaluate_achievements(
            self.achievements(),
            self.goals(),
            list(snapshot.expenses),
            snapshot.budget,
            now=self.clock(),
        )
        for event in events:
            achievement = event.achievement
            if achievement.id is None:
                achievement = replace(achievement, id=generate_id())
            self._unlocked[achievement.title] = achievement
            self._save_unlock(achievement)
        return events

    # -- analytics -----------------------------------------------------------

    def progress_stats(self) -> ProgressStats:
        snapshot = self.budgets.snapshot()
        return calculate_progress_stats(
            self.goals(),
            list(snapshot.expenses),
            snapshot.budget,
            self.achievements(),
            period=self.budgets.current_month(),
        )

    def expense_trends(self) -> List[ExpenseTrend]:
        return list(self.progress_stats().monthly_trends)

    def refresh(self) -> Tuple[ProgressStats, List[UnlockEvent]]:
        """Recompute everything after goals, expenses or the budget changed."""
        events = self.check_and_unlock_achievements()
        return self.progress_stats(), events


class LearnFinanceService(_SessionService):
    """Community tip feed with moderation."""

    def __init__(
        self,
        session: Optional[Session],
        store: FinanceStore,
        clock: Optional[Clock] = None,
        admin_ids: Optional[Iterable[str]] = None,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(session, store, clock)
        self.admin_ids = frozenset(admin_ids) if admin_ids is not None else None
        self.rng = rng or random.Random()

    @property
    def is_admin(self) -> bool:
        if self.session is None:
            return False
        if self.admin_ids is None:
            return config.is_admin(self.session.user_id)
        return self.session.user_id in self.admin_ids

    def _require_admin(self) -> Session:
        session = self._require_user()
        if not self.is_admin:
            raise NotAuthorizedError('Not authorized')
        return session

    # -- reads ---------------------------------------------------------------

    def posts(self) -> List[FinancePost]:
        with _persisting('Could not load posts'):
            return self.store.fetch_posts()

    def _find_post(self, post_id: str) -> Optional[FinancePost]:
        with _persisting('Could not load this post'):
            return self.store.fetch_post(post_id)

    def filtered_posts(self, filters: Optional[PostFilters] = None, sort: Optional[PostSort] = None) -> List[FinancePost]:
        return filter_posts(self.posts(), filters, sort)

    def pending_posts(self) -> List[FinancePost]:
        return pending_posts(self.posts())

    def featured_posts(self) -> List[FinancePost]:
        return featured_posts(self.posts())

    def user_posts(self, user_id: str) -> List[FinancePost]:
        return user_posts(self.posts(), user_id)

    def admin_stats(self, today: Optional[date] = None) -> Optional[AdminStats]:
        if not self.is_admin:
            return None
        return calculate_admin_stats(self.posts(), today or self.clock().date())

    def user_contribution(self) -> Optional[UserContribution]:
        """The signed-in user's rollup, created on first access."""
        if self.session is None:
            return None
        with _persisting('Could not load your contributions'):
            contribution = self.store.fetch_contribution(self.user_id)
            if contribution is None:
                contribution = UserContribution(user_id=self.user_id, joined_at=self.clock())
                self.store.create_contribution(contribution)
        return contribution

    # -- writes --------------------------------------------------------------

    def seed_default_posts(self) -> int:
        """Add the starter posts when the feed is empty.

        Returns:
            Number of posts added.
        """
        with _persisting('Could not initialise default posts'):
            if self.store.count_posts() > 0:
                return 0
            now = self.clock()
            entries = default_learning_posts()
            for entry in entries:
                self.store.add_post(FinancePost(
                    id=generate_id(),
                    title=entry['title'],
                    content=entry['content'],
                    category=entry['category'],
                    tags=list(entry.get('tags', [])),
                    author_id=entry['author_id'],
                    author_name=entry['author_name'],
                    status=entry.get('status', 'approved'),
                    featured=bool(entry.get('featured', False)),
                    created_at=now,
                    approved_at=now,
                    likes=self.rng.randint(10, 60),
                    views=self.rng.randint(50, 250),
                ))
        logger.info("No posts found, initialized %d default posts", len(entries))
        return len(entries)

    def submit_post(self, title: str, content: str, category: str, tags: Optional[Iterable[str]] = None) -> FinancePost:
        session = self._require_user()
        cleaned_tags = validate_post(title, content, category, tags)
        post = FinancePost(
            id=generate_id(),
            title=title.strip(),
            content=content.strip(),
            category=category,
            tags=cleaned_tags,
            author_id=session.user_id,
            author_name=session.author_name,
            status='pending',
            created_at=self.clock(),
        )
        self.user_contribution()
        with _persisting('Could not submit your post'):
            self.store.add_post(post)
            self.store.increment_contribution(session.user_id, 'total_submissions')
        return post

    def update_post(self, post_id: str, **updates: Any) -> None:
        """Edit a post's text, category or tags.

        Authors may edit their own posts, admins any post.  Moderation state
        only changes through :meth:`approve_post`, :meth:`reject_post` and
        :meth:`toggle_featured`.
        """
        session = self._require_user()
        moderated = set(updates) - EDITABLE_POST_FIELDS
        if moderated:
            raise NotAuthorizedError(f"Cannot edit {', '.join(sorted(moderated))} on a post")
        post = self._find_post(post_id)
        if post is None:
            raise NotFoundError(f"Post '{post_id}' not found")
        if post.author_id != session.user_id and not self.is_admin:
            raise NotAuthorizedError('Not authorized')
        if not updates:
            return
        updates['tags'] = validate_post(
            updates.get('title', post.title),
            updates.get('content', post.content),
            updates.get('category', post.category),
            updates.get('tags', post.tags),
        )
        with _persisting('Could not update this post'):
            found = self.store.update_post(post_id, updates)
        if not found:
            raise NotFoundError(f"Post '{post_id}' not found")

    def delete_post(self, post_id: str) -> None:
        self._require_admin()
        with _persisting('Could not delete this post'):
            self.store.delete_post(post_id)

    def approve_post(self, post_id: str) -> Optional[FinancePost]:
        session = self._require_admin()
        post = self._find_post(post_id)
        if post is None:
            return None
        approved = replace(
            post,
            status='approved',
            approved_at=self.clock(),
            approved_by=session.user_id,
            rejection_reason=None,
        )
        with _persisting('Could not approve this post'):
            self.store.update_post(post_id, {
                'status': approved.status,
                'approved_at': approved.approved_at,
                'approved_by': approved.approved_by,
                'rejection_reason': None,
            })
        try:
            self.store.increment_contribution(post.author_id, 'approved_posts')
        except STORE_ERRORS as exc:
            logger.error("Failed to update user contribution for %s: %s", post.author_id, exc)
        return approved

    def reject_post(self, post_id: str, reason: str) -> Optional[FinancePost]:
        self._require_admin()
        reason = validate_rejection_reason(reason)
        post = self._find_post(post_id)
        if post is None:
            return None
        rejected = replace(post, status='rejected', rejection_reason=reason, featured=False)
        with _persisting('Could not reject this post'):
            self.store.update_post(post_id, {
                'status': 'rejected',
                'rejection_reason': reason,
                'featured': False,
            })
        return rejected

    def toggle_featured(self, post_id: str) -> Optional[FinancePost]:
        self._require_admin()
        post = self._find_post(post_id)
        if post is None:
            return None
        if post.status != 'approved':
            raise ValidationError('Only approved posts can be featured.', field='featured')
        toggled = replace(post, featured=not post.featured)
        with _persisting('Could not update this post'):
            self.store.update_post(post_id, {'featured': toggled.featured})
        return toggled

    def like_post(self, post_id: str) -> bool:
        """Add a like; the author is credited unless they liked their own post."""
        if self.session is None:
            return False
        post = self._find_post(post_id)
        if post is None:
            return False
        with _persisting('Could not like this post'):
            self.store.increment_post_counter(post_id, 'likes')
        if post.author_id != self.session.user_id:
            try:
                self.store.increment_contribution(post.author_id, 'total_likes')
            except STORE_ERRORS as exc:
                logger.error("Failed to update author likes for %s: %s", post.author_id, exc)
        return True

    def increment_view(self, post_id: str) -> bool:
        with _persisting('Could not record this view'):
            return self.store.increment_post_counter(post_id, 'views')
