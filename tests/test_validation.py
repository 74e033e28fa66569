from datetime import datetime

import pytest

from budgetsmart.budget_stats import BudgetSnapshot
from budgetsmart.errors import ValidationError
from budgetsmart.models import Budget, Category, Expense
from budgetsmart.validation import (
    clean_tags,
    validate_amount,
    validate_budget,
    validate_expense,
    validate_goal,
    validate_income_source,
    validate_post,
    validate_rejection_reason,
)


def _snapshot(spent_food=0.0, total=500.0):
    budget = Budget(user_id='u1', total_budget=total, mode='custom', month='2024-01',
                    categories=[Category('c1', 'Food', 300.0), Category('c2', 'Rent', 400.0)])
    expenses = []
    if spent_food:
        expenses.append(Expense('e1', 'Groceries', spent_food, 'c1', datetime(2024, 1, 2)))
    return BudgetSnapshot.capture(budget, expenses)


def test_amount_must_be_positive_number():
    assert validate_amount('12.5') == 12.5
    for bad in (0, -3, 'abc', None, float('nan')):
        with pytest.raises(ValidationError):
            validate_amount(bad)


def test_expense_requires_fields():
    with pytest.raises(ValidationError, match='Please fill in'):
        validate_expense(_snapshot(), '', 10, 'c1')


def test_expense_requires_budget():
    with pytest.raises(ValidationError, match='Set up a budget'):
        validate_expense(BudgetSnapshot.capture(None, []), 'Lunch', 10, 'c1')


def test_expense_within_category_passes():
    assert validate_expense(_snapshot(spent_food=100), 'Lunch', 200, 'c1') == 200


def test_expense_over_category_remaining_rejected():
    with pytest.raises(ValidationError, match=r'remaining Food budget \(\$200.00 left\)'):
        validate_expense(_snapshot(spent_food=100), 'Dinner', 250, 'c1')


def test_exhausted_category_rejected():
    with pytest.raises(ValidationError, match='already used all of your Food budget'):
        validate_expense(_snapshot(spent_food=300), 'Snack', 1, 'c1')


def test_expense_over_period_remaining_rejected():
    with pytest.raises(ValidationError, match=r'remaining budget for this period \(\$350.00 left\)'):
        validate_expense(_snapshot(spent_food=150), 'Rent', 380, 'c2')


def test_unknown_category_has_no_room():
    with pytest.raises(ValidationError, match='Unknown Category'):
        validate_expense(_snapshot(), 'Thing', 5, 'missing')


def test_validate_budget():
    categories = [Category('c1', 'Food', 100.0)]
    assert validate_budget('250', 'student', categories) == 250.0
    with pytest.raises(ValidationError):
        validate_budget(-1, 'student', categories)
    with pytest.raises(ValidationError):
        validate_budget(100, 'pirate', categories)
    with pytest.raises(ValidationError):
        validate_budget(100, 'custom', categories, interval_unit='years')
    with pytest.raises(ValidationError):
        validate_budget(100, 'custom', categories + [Category('c1', 'Dup', 5.0)])
    with pytest.raises(ValidationError):
        validate_budget(100, 'custom', [Category('c9', 'Bad', -5.0)])


def test_validate_goal_and_income():
    assert validate_goal('Laptop', 900, 'Tech') == 900.0
    with pytest.raises(ValidationError):
        validate_goal('', 900, 'Tech')
    with pytest.raises(ValidationError):
        validate_goal('Laptop', 900, 'Tech', priority='urgent')
    assert validate_income_source('Job', 1000, 'monthly') == 1000.0
    with pytest.raises(ValidationError):
        validate_income_source('Job', 1000, 'daily')


def test_validate_post_bounds():
    assert validate_post('Title', 'Body', 'saving', [' a ', 'b', 'a', '']) == ['a', 'b']
    with pytest.raises(ValidationError):
        validate_post('x' * 101, 'Body', 'saving')
    with pytest.raises(ValidationError):
        validate_post('Title', 'x' * 2001, 'saving')
    with pytest.raises(ValidationError):
        validate_post('Title', 'Body', 'gossip')
    with pytest.raises(ValidationError):
        clean_tags(['t1', 't2', 't3', 't4', 't5', 't6'])
    with pytest.raises(ValidationError):
        clean_tags(['x' * 21])


def test_rejection_reason_required():
    assert validate_rejection_reason('  spam ') == 'spam'
    with pytest.raises(ValidationError) as excinfo:
        validate_rejection_reason('   ')
    assert excinfo.value.field == 'reason'
