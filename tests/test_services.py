"""End-to-end service behaviour over a temporary sqlite store."""

from __future__ import annotations

import random
import sqlite3
from datetime import datetime

import pytest

from budgetsmart.db import FinanceStore
from budgetsmart.errors import (
    AuthenticationError,
    NotAuthorizedError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from budgetsmart.models import Category, PostFilters, PostSort
from budgetsmart.services import BudgetService, LearnFinanceService, ProgressService, Session

NOW = datetime(2024, 1, 15, 10, 0)


def _clock():
    return NOW


def _store(tmp_path):
    store = FinanceStore(tmp_path / "budgetsmart.db")
    store.init_db()
    return store


def _services(tmp_path, user_id='u1'):
    store = _store(tmp_path)
    session = Session(user_id=user_id, display_name='Sam')
    budgets = BudgetService(session, store, clock=_clock)
    progress = ProgressService(session, store, budgets, clock=_clock)
    return store, budgets, progress


def _with_budget(budgets):
    return budgets.create_budget(
        1000.0,
        'custom',
        [Category('c1', 'Food', 400.0), Category('c2', 'Rent', 500.0)],
    )


def test_budget_flow_matches_stats(tmp_path):
    _, budgets, _ = _services(tmp_path)
    assert budgets.stats() is None
    assert budgets.current_month() == '2024-01'

    _with_budget(budgets)
    budgets.add_expense('Groceries', 150, 'c1')
    budgets.add_expense('Takeaway', '100', 'c1')

    stats = budgets.stats()
    assert stats.total_spent == 250
    assert stats.remaining_budget == 750
    assert stats.percentage_used == pytest.approx(25.0)
    assert stats.breakdown_for('c1').percentage == pytest.approx(62.5)
    assert budgets.category_remaining('c1') == 150
    assert budgets.budget_remaining() == 750


def test_add_expense_rejects_over_category(tmp_path):
    store, budgets, _ = _services(tmp_path)
    _with_budget(budgets)
    budgets.add_expense('Groceries', 350, 'c1')

    with pytest.raises(ValidationError, match='remaining Food budget'):
        budgets.add_expense('Dinner', 60, 'c1')
    assert len(store.fetch_expenses('u1', '2024-01')) == 1


def test_add_expense_validates_against_given_snapshot(tmp_path):
    _, budgets, _ = _services(tmp_path)
    _with_budget(budgets)
    snapshot = budgets.snapshot()
    budgets.add_expense('Groceries', 300, 'c1')

    # the earlier snapshot still sees the full allocation
    budgets.add_expense('Market', 350, 'c1', snapshot=snapshot)
    assert budgets.stats().total_spent == 650


def test_template_budget_and_categories(tmp_path):
    _, budgets, _ = _services(tmp_path)
    budget = budgets.create_budget_from_template('student')
    assert budget.total_budget == pytest.approx(budget.total_allocated)

    category = budgets.add_category('Books', 50.0, color='#000000')
    budgets.update_category(category.id, allocated_amount=75.0)
    assert budgets.current_budget().category(category.id).allocated_amount == 75.0

    budgets.delete_category(category.id)
    assert budgets.current_budget().category(category.id) is None


def test_deleted_category_leaves_unknown_expense(tmp_path):
    _, budgets, _ = _services(tmp_path)
    _with_budget(budgets)
    budgets.add_expense('Groceries', 50, 'c1')
    budgets.delete_category('c1')

    snapshot = budgets.snapshot()
    assert snapshot.stats.total_spent == 50
    assert [name for _, name in snapshot.expenses_with_category_names()] == ['Unknown Category']


def test_expense_and_income_updates(tmp_path):
    _, budgets, _ = _services(tmp_path)
    _with_budget(budgets)
    expense = budgets.add_expense('Groceries', 50, 'c1', notes='weekly shop')
    budgets.update_expense(expense.id, amount=60)
    assert budgets.expenses()[0].amount == 60
    with pytest.raises(NotFoundError):
        budgets.update_expense('missing', amount=5)
    budgets.delete_expense(expense.id)
    assert budgets.expenses() == []

    income = budgets.add_income_source('Job', 1200, 'monthly')
    budgets.update_income_source(income.id, amount=1300)
    assert budgets.income_sources()[0].amount == 1300
    budgets.delete_income_source(income.id)
    assert budgets.income_sources() == []


def test_reset_monthly_budget_clears_expenses(tmp_path):
    _, budgets, _ = _services(tmp_path)
    _with_budget(budgets)
    budgets.add_expense('Groceries', 50, 'c1')
    budgets.add_expense('Bus', 20, 'c2')

    assert budgets.reset_monthly_budget() == 2
    assert budgets.stats().total_spent == 0
    with pytest.raises(NotFoundError):
        BudgetService(Session('nobody'), budgets.store, clock=_clock).reset_monthly_budget()


def test_signed_out_reads_are_empty_and_writes_fail(tmp_path):
    store = _store(tmp_path)
    budgets = BudgetService(None, store, clock=_clock)
    progress = ProgressService(None, store, budgets, clock=_clock)

    assert budgets.current_budget() is None
    assert budgets.expenses() == []
    assert progress.goals() == []
    assert progress.check_and_unlock_achievements() == []
    with pytest.raises(AuthenticationError):
        budgets.add_expense('Lunch', 5, 'c1')
    with pytest.raises(AuthenticationError):
        progress.create_goal('Trip', 500, 'Travel', datetime(2024, 6, 1))


def test_goal_progress_clamps_and_completes(tmp_path):
    _, _, progress = _services(tmp_path)
    goal = progress.create_goal('Laptop', 1000, 'Tech', datetime(2024, 6, 1))
    progress.update_goal_progress(goal.id, 800)
    updated = progress.update_goal_progress(goal.id, 500)

    assert updated.current_amount == 1000
    assert updated.status == 'completed'
    stored = progress.goals()[0]
    assert stored.current_amount == 1000
    assert stored.status == 'completed'
    assert progress.update_goal_progress('missing', 10) is None


def test_goal_toggle_update_and_delete(tmp_path):
    _, _, progress = _services(tmp_path)
    goal = progress.create_goal('Trip', 500, 'Travel', datetime(2024, 6, 1), priority='high')
    assert progress.toggle_goal_status(goal.id).status == 'paused'
    progress.update_goal(goal.id, title='Road trip')
    assert progress.goals()[0].title == 'Road trip'
    with pytest.raises(NotFoundError):
        progress.update_goal('missing', title='x')
    progress.delete_goal(goal.id)
    assert progress.goals() == []


def test_update_goal_keeps_amount_within_target(tmp_path):
    _, _, progress = _services(tmp_path)
    car = progress.create_goal('Car', 1000, 'Transport', datetime(2024, 6, 1))
    progress.update_goal(car.id, current_amount=5000)
    stored = progress.goals()[0]
    assert stored.current_amount == 1000
    assert stored.status == 'completed'

    bike = progress.create_goal('Bike', 1000, 'Transport', datetime(2024, 6, 1))
    progress.update_goal_progress(bike.id, 600)
    progress.update_goal(bike.id, target_amount=400)
    stored = next(goal for goal in progress.goals() if goal.id == bike.id)
    assert stored.target_amount == 400
    assert stored.current_amount == 400
    assert stored.status == 'completed'

    with pytest.raises(ValidationError):
        progress.update_goal(car.id, current_amount=-5)


def test_completed_goal_cannot_be_reopened(tmp_path):
    _, _, progress = _services(tmp_path)
    goal = progress.create_goal('Laptop', 500, 'Tech', datetime(2024, 6, 1))
    progress.update_goal_progress(goal.id, 500)

    with pytest.raises(ValidationError):
        progress.update_goal(goal.id, status='active')
    assert progress.goals()[0].status == 'completed'


def test_first_expense_unlocks_achievement(tmp_path):
    store, budgets, progress = _services(tmp_path)
    _with_budget(budgets)
    budgets.add_expense('Coffee', 4, 'c1')

    events = progress.check_and_unlock_achievements()
    titles = {event.achievement.title for event in events}
    assert 'First Expense' in titles
    assert 'Budget Master' in titles

    stored = {ach.title: ach for ach in store.fetch_achievements('u1')}
    assert stored['First Expense'].is_unlocked
    assert stored['First Expense'].unlocked_at == NOW
    assert progress.check_and_unlock_achievements() == []
    assert progress.progress_stats().achievements_unlocked == 2


def test_unlock_write_failure_is_logged_and_retried(tmp_path, monkeypatch, caplog):
    store, budgets, progress = _services(tmp_path)
    _with_budget(budgets)
    budgets.add_expense('Coffee', 4, 'c1')

    original_save = store.save_achievement

    def failing_save(achievement):
        raise sqlite3.OperationalError('database is locked')

    monkeypatch.setattr(store, 'save_achievement', failing_save)
    events = progress.check_and_unlock_achievements()

    assert events
    assert 'Failed to unlock achievement' in caplog.text
    assert store.fetch_achievements('u1') == []
    assert any(ach.title == 'First Expense' for ach in progress.unlocked_achievements())

    monkeypatch.setattr(store, 'save_achievement', original_save)
    assert progress.check_and_unlock_achievements() == []
    assert {ach.title for ach in store.fetch_achievements('u1')} >= {'First Expense'}


def test_store_failure_becomes_persistence_error(tmp_path, monkeypatch):
    store, budgets, _ = _services(tmp_path)
    _with_budget(budgets)

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError('disk I/O error')

    monkeypatch.setattr(store, 'add_expense', broken)
    with pytest.raises(PersistenceError) as excinfo:
        budgets.add_expense('Coffee', 4, 'c1')
    assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)


def test_progress_stats_and_trends(tmp_path):
    _, budgets, progress = _services(tmp_path)
    _with_budget(budgets)
    budgets.add_expense('Rent', 450, 'c2', date=datetime(2024, 1, 1))
    budgets.add_expense('Groceries', 80, 'c1', date=datetime(2024, 1, 3))
    progress.create_goal('Fund', 500, 'Savings', datetime(2024, 6, 1))

    stats, _ = progress.refresh()
    assert stats.total_goals == 1
    assert stats.top_category == 'Rent'
    assert stats.average_monthly_spending == 530
    assert progress.expense_trends()[0].month == '2024-01'


def _learn(tmp_path, user_id, admins=('admin',)):
    store = _store(tmp_path)
    return LearnFinanceService(
        Session(user_id=user_id, display_name=user_id.title()),
        store,
        clock=_clock,
        admin_ids=admins,
        rng=random.Random(7),
    )


def test_seed_default_posts_only_once(tmp_path):
    learn = _learn(tmp_path, 'u1')
    added = learn.seed_default_posts()

    assert added > 0
    assert learn.seed_default_posts() == 0
    posts = learn.posts()
    assert len(posts) == added
    assert all(post.status == 'approved' for post in posts)
    assert all(10 <= post.likes <= 60 for post in posts)


def test_submit_moderate_and_like(tmp_path):
    author = _learn(tmp_path, 'u1')
    admin = LearnFinanceService(Session('admin'), author.store, clock=_clock, admin_ids=['admin'])
    reader = LearnFinanceService(Session('u2'), author.store, clock=_clock, admin_ids=['admin'])

    post = author.submit_post('Emergency fund', 'Keep three months of costs.', 'emergency', ['fund'])
    assert post.status == 'pending'
    assert post.author_name == 'U1'
    assert [p.id for p in admin.pending_posts()] == [post.id]
    assert author.user_contribution().total_submissions == 1

    with pytest.raises(NotAuthorizedError):
        author.approve_post(post.id)
    with pytest.raises(ValidationError):
        admin.toggle_featured(post.id)

    approved = admin.approve_post(post.id)
    assert approved.status == 'approved'
    assert approved.approved_by == 'admin'
    assert admin.toggle_featured(post.id).featured
    assert [p.id for p in reader.featured_posts()] == [post.id]

    assert reader.like_post(post.id)
    assert author.like_post(post.id)
    contribution = author.user_contribution()
    assert contribution.approved_posts == 1
    assert contribution.total_likes == 1
    assert reader.posts()[0].likes == 2

    with pytest.raises(NotAuthorizedError):
        reader.update_post(post.id, title='Hijacked')
    author.update_post(post.id, tags=['fund', 'savings'])
    assert reader.posts()[0].tags == ['fund', 'savings']

    assert reader.increment_view(post.id)
    liked = reader.filtered_posts(PostFilters(tags=['fund']), PostSort('likes', 'desc'))
    assert liked[0].views == 1


def test_update_post_cannot_change_moderation_state(tmp_path):
    author = _learn(tmp_path, 'u1')
    admin = LearnFinanceService(Session('admin'), author.store, clock=_clock, admin_ids=['admin'])
    post = author.submit_post('Side hustle', 'Tutor on weekends.', 'career')

    with pytest.raises(NotAuthorizedError):
        author.update_post(post.id, status='approved', featured=True)
    with pytest.raises(NotAuthorizedError):
        author.update_post(post.id, status='rejected')
    with pytest.raises(NotAuthorizedError):
        admin.update_post(post.id, rejection_reason='spam')

    stored = author.user_posts('u1')[0]
    assert stored.status == 'pending'
    assert stored.featured is False
    assert stored.rejection_reason is None

    admin.update_post(post.id, title='Weekend tutoring')
    assert author.user_posts('u1')[0].title == 'Weekend tutoring'


def test_reject_needs_reason_and_admin_stats(tmp_path):
    author = _learn(tmp_path, 'u1')
    admin = LearnFinanceService(Session('admin'), author.store, clock=_clock, admin_ids=['admin'])
    post = author.submit_post('Crypto', 'All in!', 'investing')

    with pytest.raises(ValidationError):
        admin.reject_post(post.id, '  ')
    rejected = admin.reject_post(post.id, 'Risky advice')
    assert rejected.status == 'rejected'
    assert author.user_posts('u1')[0].rejection_reason == 'Risky advice'

    assert author.admin_stats() is None
    stats = admin.admin_stats()
    assert stats.rejected_posts == 1
    assert stats.posts_today == 1
    assert admin.approve_post('missing') is None


def test_signed_out_learn_finance(tmp_path):
    learn = LearnFinanceService(None, _store(tmp_path), clock=_clock, admin_ids=[])
    assert not learn.is_admin
    assert learn.user_contribution() is None
    assert not learn.like_post('p1')
    with pytest.raises(AuthenticationError):
        learn.submit_post('Title', 'Body', 'general')
