"""Round-trips through the sqlite document store using a temporary database."""

from __future__ import annotations

from datetime import datetime

import pytest

from budgetsmart.achievements import default_achievements
from budgetsmart.db import FinanceStore
from budgetsmart.models import (
    Budget,
    Category,
    Expense,
    FinancePost,
    Goal,
    IncomeSource,
    UserContribution,
)


@pytest.fixture
def store(tmp_path):
    finance_store = FinanceStore(tmp_path / "finance.db")
    finance_store.init_db()
    return finance_store


def _budget(month='2024-01'):
    return Budget(
        user_id='u1',
        total_budget=900.0,
        mode='student',
        month=month,
        categories=[Category('c1', 'Food', 300.0, color='#ef4444', icon='🍔')],
        created_at=datetime(2024, 1, 1, 9, 0),
    )


def _expense(exp_id, created, month='2024-01'):
    return Expense(
        id=exp_id,
        name='Lunch',
        amount=12.5,
        category_id='c1',
        date=created,
        created_at=created,
        month=month,
    )


def test_budget_round_trip_and_update(store):
    store.save_budget(_budget())
    loaded = store.fetch_budget('u1', '2024-01')

    assert loaded.id == '2024-01'
    assert loaded.total_budget == 900.0
    assert loaded.categories[0].name == 'Food'
    assert loaded.categories[0].icon == '🍔'
    assert loaded.created_at == datetime(2024, 1, 1, 9, 0)
    assert store.fetch_budget('u1', '2024-02') is None
    assert store.fetch_budget('someone-else', '2024-01') is None

    assert store.update_budget('u1', '2024-01', {'categories': [Category('c2', 'Rent', 500.0)]})
    assert [cat.id for cat in store.fetch_budget('u1', '2024-01').categories] == ['c2']


def test_update_rejects_unknown_columns(store):
    store.save_budget(_budget())
    with pytest.raises(ValueError):
        store.update_budget('u1', '2024-01', {'user_id': 'u2'})


def test_expenses_are_scoped_and_newest_first(store):
    store.add_expense('u1', _expense('e1', datetime(2024, 1, 2)))
    store.add_expense('u1', _expense('e2', datetime(2024, 1, 5)))
    store.add_expense('u1', _expense('e3', datetime(2024, 2, 1), month='2024-02'))
    store.add_expense('u2', _expense('e4', datetime(2024, 1, 3)))

    assert [exp.id for exp in store.fetch_expenses('u1', '2024-01')] == ['e2', 'e1']

    assert store.update_expense('u1', 'e1', {'amount': 20.0})
    assert not store.update_expense('u2', 'e1', {'amount': 99.0})
    assert store.delete_expenses_for_month('u1', '2024-01') == 2
    assert store.fetch_expenses('u1', '2024-01') == []
    assert len(store.fetch_expenses('u1', '2024-02')) == 1


def test_income_and_goals(store):
    store.add_income_source('u1', IncomeSource('i1', 'Job', 1500.0, 'monthly', created_at=datetime(2024, 1, 1)))
    assert store.fetch_income_sources('u1')[0].frequency == 'monthly'
    assert store.delete_income_source('u1', 'i1')
    assert store.fetch_income_sources('u1') == []

    goal = Goal(id='g1', user_id='u1', title='Trip', target_amount=800.0, category='Travel',
                deadline=datetime(2024, 8, 1))
    store.add_goal(goal)
    assert store.update_goal('u1', 'g1', {'current_amount': 300.0, 'status': 'paused'})
    loaded = store.fetch_goals('u1')[0]
    assert loaded.current_amount == 300.0
    assert loaded.status == 'paused'
    assert loaded.deadline == datetime(2024, 8, 1)


def test_achievement_overrides_replace_by_id(store):
    first = default_achievements('u1')[0]
    first.id = 'a1'
    store.save_achievement(first)
    first.is_unlocked = True
    first.unlocked_at = datetime(2024, 1, 3)
    store.save_achievement(first)

    stored = store.fetch_achievements('u1')
    assert len(stored) == 1
    assert stored[0].is_unlocked
    assert stored[0].criteria.type == 'expense_count'


def test_posts_counters_and_contributions(store):
    store.add_post(FinancePost(
        id='p1', title='Tip', content='Save', category='saving', author_id='u1',
        author_name='Sam', tags=['a', 'b'], created_at=datetime(2024, 1, 1),
    ))
    assert store.count_posts() == 1
    assert store.increment_post_counter('p1', 'likes')
    assert store.increment_post_counter('p1', 'views', by=3)
    assert store.update_post('p1', {'featured': True, 'status': 'approved'})

    post = store.fetch_post('p1')
    assert post.likes == 1
    assert post.views == 3
    assert post.featured is True
    assert post.tags == ['a', 'b']
    assert store.fetch_post('missing') is None

    with pytest.raises(ValueError):
        store.increment_post_counter('p1', 'title')

    store.create_contribution(UserContribution('u1', joined_at=datetime(2024, 1, 1)))
    store.increment_contribution('u1', 'total_submissions')
    assert store.fetch_contribution('u1').total_submissions == 1
    assert store.delete_post('p1')
    assert store.fetch_posts() == []
