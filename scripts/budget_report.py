#!/usr/bin/env python3
"""Print budget, goal and achievement figures for one user."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from budgetsmart import config
from budgetsmart.budget_stats import monthly_income
from budgetsmart.db import FinanceStore
from budgetsmart.errors import BudgetSmartError
from budgetsmart.formatting import format_currency, format_percentage
from budgetsmart.services import BudgetService, ProgressService, Session

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Show budget and progress stats for a user.')
    parser.add_argument('--user', required=True, help='User id to report on')
    parser.add_argument('--db', type=Path, default=None, help='Database file (defaults to config)')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    store = FinanceStore(args.db)
    logger.debug("Using database %s", args.db or config.get_db_path())
    store.init_db()
    session = Session(user_id=args.user)
    budgets = BudgetService(session, store)
    progress = ProgressService(session, store, budgets)

    try:
        snapshot = budgets.snapshot()
        income = monthly_income(budgets.income_sources())
        stats = progress.progress_stats()
    except BudgetSmartError as exc:
        print(f"Error: {exc}")
        return 1

    print(f"Budget period: {budgets.current_month()}")
    budget_stats = snapshot.stats
    if budget_stats is None:
        print("No budget set up for this period.")
    else:
        print(f"  Total budget: {format_currency(budget_stats.total_budget)}")
        print(f"  Spent:        {format_currency(budget_stats.total_spent)}")
        print(f"  Remaining:    {format_currency(budget_stats.remaining_budget)}")
        print(f"  Used:         {format_percentage(budget_stats.percentage_used)}")
        print("\nBy category:")
        for row in budget_stats.category_breakdown:
            print(
                f"  {row.category_name:<20} {format_currency(row.spent):>12} of "
                f"{format_currency(row.allocated):>12} ({format_percentage(row.percentage)})"
            )
    print(f"\nMonthly income: {format_currency(income)}")

    print("\nGoals:")
    print(f"  {stats.completed_goals} of {stats.total_goals} completed "
          f"({format_percentage(stats.goal_completion_rate)})")
    print(f"  Saved so far: {format_currency(stats.total_savings)}")
    print(f"  Top category: {stats.top_category}")
    print(f"  Achievements unlocked: {stats.achievements_unlocked}")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
