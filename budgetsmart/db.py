"""SQLite-backed document store for budgets, goals and learn-finance posts.

Each collection is a table keyed by a document id (budgets are keyed by owner
and period).  Nested values such as budget categories, post tags and
achievement criteria are stored as JSON text.  Queries are limited to
equality filters and a single ordering column; any richer filtering or
aggregation happens in the aggregator modules.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pandas as pd

from .config import DB_PATH, ensure_data_directories
from .models import (
    Achievement,
    AchievementCriteria,
    Budget,
    Category,
    Expense,
    FinancePost,
    Goal,
    IncomeSource,
    UserContribution,
    parse_datetime,
)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS budgets (
    user_id TEXT NOT NULL,
    month TEXT NOT NULL,
    total_budget REAL NOT NULL,
    mode TEXT NOT NULL,
    categories TEXT NOT NULL DEFAULT '[]',
    interval_unit TEXT NOT NULL DEFAULT 'months',
    interval_value INTEGER NOT NULL DEFAULT 1,
    created_at TEXT,
    PRIMARY KEY (user_id, month)
);

CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    amount REAL NOT NULL,
    category_id TEXT,
    date TEXT,
    notes TEXT,
    month TEXT NOT NULL,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_expenses_user_month ON expenses (user_id, month);

CREATE TABLE IF NOT EXISTS income_sources (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    amount REAL NOT NULL,
    frequency TEXT NOT NULL,
    color TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS goals (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    target_amount REAL NOT NULL,
    current_amount REAL NOT NULL DEFAULT 0,
    category TEXT,
    deadline TEXT,
    priority TEXT NOT NULL DEFAULT 'medium',
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS achievements (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    icon TEXT,
    type TEXT,
    criteria TEXT NOT NULL,
    is_unlocked INTEGER NOT NULL DEFAULT 0,
    unlocked_at TEXT
);

CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    category TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    author_id TEXT NOT NULL,
    author_name TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT,
    approved_at TEXT,
    approved_by TEXT,
    likes INTEGER NOT NULL DEFAULT 0,
    views INTEGER NOT NULL DEFAULT 0,
    featured INTEGER NOT NULL DEFAULT 0,
    rejection_reason TEXT
);

CREATE TABLE IF NOT EXISTS user_contributions (
    user_id TEXT PRIMARY KEY,
    total_submissions INTEGER NOT NULL DEFAULT 0,
    approved_posts INTEGER NOT NULL DEFAULT 0,
    total_likes INTEGER NOT NULL DEFAULT 0,
    badges TEXT NOT NULL DEFAULT '[]',
    joined_at TEXT
);
"""

UPDATABLE_COLUMNS: Dict[str, set] = {
    'budgets': {'total_budget', 'mode', 'categories', 'interval_unit', 'interval_value', 'created_at'},
    'expenses': {'name', 'amount', 'category_id', 'date', 'notes'},
    'income_sources': {'name', 'amount', 'frequency', 'color'},
    'goals': {
        'title', 'description', 'target_amount', 'current_amount', 'category',
        'deadline', 'priority', 'status', 'updated_at',
    },
    'achievements': {'criteria', 'is_unlocked', 'unlocked_at'},
    'posts': {
        'title', 'content', 'category', 'tags', 'status', 'approved_at',
        'approved_by', 'featured', 'rejection_reason',
    },
}

# Errors a store call can surface; pandas wraps failures inside read_sql_query.
STORE_ERRORS = (sqlite3.Error, pd.errors.DatabaseError)

COUNTER_COLUMNS: Dict[str, set] = {
    'posts': {'likes', 'views'},
    'user_contributions': {'total_submissions', 'approved_posts', 'total_likes'},
}


def _sanitize_db_value(value: Any) -> Any:
    """Convert pandas NA/NaN and datetimes to SQLite-friendly values."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    if isinstance(value, bool):
        return int(value)
    if not isinstance(value, str) and pd.isna(value):
        return None
    return value


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if not isinstance(value, (str, list, dict)) and pd.isna(value):
        return None
    return value


def _load_json(value: Any, default: Any) -> Any:
    value = _clean(value)
    if value is None:
        return default
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return default


# ---------------------------------------------------------------------------
# Row <-> model conversion
# ---------------------------------------------------------------------------


def _row_to_budget(row: Dict[str, Any]) -> Budget:
    return Budget(
        id=row['month'],
        user_id=row['user_id'],
        total_budget=float(row['total_budget']),
        mode=row['mode'],
        month=row['month'],
        categories=[Category.from_dict(c) for c in _load_json(row.get('categories'), [])],
        interval_unit=_clean(row.get('interval_unit')) or 'months',
        interval_value=int(_clean(row.get('interval_value')) or 1),
        created_at=parse_datetime(_clean(row.get('created_at'))),
    )


def _row_to_expense(row: Dict[str, Any]) -> Expense:
    return Expense(
        id=row['id'],
        name=row['name'],
        amount=float(row['amount']),
        category_id=_clean(row.get('category_id')) or '',
        date=parse_datetime(_clean(row.get('date'))),
        notes=_clean(row.get('notes')),
        month=row['month'],
        created_at=parse_datetime(_clean(row.get('created_at'))),
    )


def _row_to_income(row: Dict[str, Any]) -> IncomeSource:
    return IncomeSource(
        id=row['id'],
        name=row['name'],
        amount=float(row['amount']),
        frequency=row['frequency'],
        color=_clean(row.get('color')),
        created_at=parse_datetime(_clean(row.get('created_at'))),
    )


def _row_to_goal(row: Dict[str, Any]) -> Goal:
    return Goal(
        id=row['id'],
        user_id=row['user_id'],
        title=row['title'],
        description=_clean(row.get('description')),
        target_amount=float(row['target_amount']),
        current_amount=float(row['current_amount']),
        category=_clean(row.get('category')) or '',
        deadline=parse_datetime(_clean(row.get('deadline'))),
        priority=row['priority'],
        status=row['status'],
        created_at=parse_datetime(_clean(row.get('created_at'))),
        updated_at=parse_datetime(_clean(row.get('updated_at'))),
    )


def _row_to_achievement(row: Dict[str, Any]) -> Achievement:
    return Achievement(
        id=row['id'],
        user_id=row['user_id'],
        title=row['title'],
        description=_clean(row.get('description')) or '',
        icon=_clean(row.get('icon')) or '',
        type=_clean(row.get('type')) or '',
        criteria=AchievementCriteria.from_dict(_load_json(row.get('criteria'), {})),
        is_unlocked=bool(row['is_unlocked']),
        unlocked_at=parse_datetime(_clean(row.get('unlocked_at'))),
    )


def _row_to_post(row: Dict[str, Any]) -> FinancePost:
    return FinancePost(
        id=row['id'],
        title=row['title'],
        content=row['content'],
        category=row['category'],
        tags=list(_load_json(row.get('tags'), [])),
        author_id=row['author_id'],
        author_name=_clean(row.get('author_name')) or '',
        status=row['status'],
        created_at=parse_datetime(_clean(row.get('created_at'))),
        approved_at=parse_datetime(_clean(row.get('approved_at'))),
        approved_by=_clean(row.get('approved_by')),
        likes=int(row['likes']),
        views=int(row['views']),
        featured=bool(row['featured']),
        rejection_reason=_clean(row.get('rejection_reason')),
    )


def _row_to_contribution(row: Dict[str, Any]) -> UserContribution:
    return UserContribution(
        user_id=row['user_id'],
        total_submissions=int(row['total_submissions']),
        approved_posts=int(row['approved_posts']),
        total_likes=int(row['total_likes']),
        badges=list(_load_json(row.get('badges'), [])),
        joined_at=parse_datetime(_clean(row.get('joined_at'))),
    )


class FinanceStore:
    """Handles all document reads and writes for one database file."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            db_path: Optional custom database file.  Defaults to ``DB_PATH``
                from config.
        """
        self.db_path = Path(db_path) if db_path is not None else DB_PATH

    def _ensure_dirs(self) -> None:
        if self.db_path == DB_PATH:
            ensure_data_directories()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path))
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    # -- generic helpers -----------------------------------------------------

    def _select(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            df = pd.read_sql_query(sql, conn, params=list(params))
        return df.to_dict('records')

    def _insert(self, table: str, row: Dict[str, Any], replace: bool = False) -> None:
        columns = list(row.keys())
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        sql = (
            f"{verb} INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        with self.connect() as conn:
            conn.execute(sql, [_sanitize_db_value(row[c]) for c in columns])
            conn.commit()

    def _update(self, table: str, keys: Dict[str, Any], updates: Dict[str, Any]) -> bool:
        unknown = set(updates) - UPDATABLE_COLUMNS[table]
        if unknown:
            raise ValueError(f"Cannot update {sorted(unknown)} on {table}")
        if not updates:
            return False
        assignments = ', '.join(f"{col} = ?" for col in updates)
        conditions = ' AND '.join(f"{col} = ?" for col in keys)
        params = [_sanitize_db_value(v) for v in updates.values()] + list(keys.values())
        with self.connect() as conn:
            cursor = conn.execute(f"UPDATE {table} SET {assignments} WHERE {conditions}", params)
            conn.commit()
            return cursor.rowcount > 0

    def _delete(self, table: str, keys: Dict[str, Any]) -> bool:
        conditions = ' AND '.join(f"{col} = ?" for col in keys)
        with self.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE {conditions}", list(keys.values()))
            conn.commit()
            return cursor.rowcount > 0

    def _increment(self, table: str, key_col: str, key: str, column: str, by: int = 1) -> bool:
        if column not in COUNTER_COLUMNS[table]:
            raise ValueError(f"'{column}' is not a counter on {table}")
        with self.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {column} = {column} + ? WHERE {key_col} = ?",
                (by, key),
            )
            conn.commit()
            return cursor.rowcount > 0

    # -- budgets ---------------------------------------------------------------

    def save_budget(self, budget: Budget) -> None:
        """Create or overwrite the owner's budget for ``budget.month``."""
        self._insert('budgets', {
            'user_id': budget.user_id,
            'month': budget.month,
            'total_budget': float(budget.total_budget),
            'mode': budget.mode,
            'categories': [cat.to_dict() for cat in budget.categories],
            'interval_unit': budget.interval_unit,
            'interval_value': int(budget.interval_value),
            'created_at': budget.created_at,
        }, replace=True)

    def fetch_budget(self, user_id: str, month: str) -> Optional[Budget]:
        rows = self._select(
            "SELECT * FROM budgets WHERE user_id = ? AND month = ?",
            (user_id, month),
        )
        return _row_to_budget(rows[0]) if rows else None

    def update_budget(self, user_id: str, month: str, updates: Dict[str, Any]) -> bool:
        updates = dict(updates)
        if 'categories' in updates:
            updates['categories'] = [
                cat.to_dict() if isinstance(cat, Category) else dict(cat)
                for cat in updates['categories']
            ]
        return self._update('budgets', {'user_id': user_id, 'month': month}, updates)

    # -- expenses --------------------------------------------------------------

    def add_expense(self, user_id: str, expense: Expense) -> None:
        self._insert('expenses', {
            'id': expense.id,
            'user_id': user_id,
            'name': expense.name,
            'amount': float(expense.amount),
            'category_id': expense.category_id,
            'date': expense.date,
            'notes': expense.notes,
            'month': expense.month,
            'created_at': expense.created_at,
        })

    def fetch_expenses(self, user_id: str, month: str) -> List[Expense]:
        """Expenses for one period, newest first."""
        rows = self._select(
            "SELECT * FROM expenses WHERE user_id = ? AND month = ? ORDER BY created_at DESC",
            (user_id, month),
        )
        return [_row_to_expense(row) for row in rows]

    def update_expense(self, user_id: str, expense_id: str, updates: Dict[str, Any]) -> bool:
        return self._update('expenses', {'id': expense_id, 'user_id': user_id}, updates)

    def delete_expense(self, user_id: str, expense_id: str) -> bool:
        return self._delete('expenses', {'id': expense_id, 'user_id': user_id})

    def delete_expenses_for_month(self, user_id: str, month: str) -> int:
        """Delete every expense of a period in one transaction."""
        with self.connect() as conn:
            try:
                cursor = conn.execute(
                    "DELETE FROM expenses WHERE user_id = ? AND month = ?",
                    (user_id, month),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return cursor.rowcount

    # -- income sources --------------------------------------------------------

    def add_income_source(self, user_id: str, income: IncomeSource) -> None:
        self._insert('income_sources', {
            'id': income.id,
            'user_id': user_id,
            'name': income.name,
            'amount': float(income.amount),
            'frequency': income.frequency,
            'color': income.color,
            'created_at': income.created_at,
        })

    def fetch_income_sources(self, user_id: str) -> List[IncomeSource]:
        rows = self._select(
            "SELECT * FROM income_sources WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [_row_to_income(row) for row in rows]

    def update_income_source(self, user_id: str, income_id: str, updates: Dict[str, Any]) -> bool:
        return self._update('income_sources', {'id': income_id, 'user_id': user_id}, updates)

    def delete_income_source(self, user_id: str, income_id: str) -> bool:
        return self._delete('income_sources', {'id': income_id, 'user_id': user_id})

    # -- goals -----------------------------------------------------------------

    def add_goal(self, goal: Goal) -> None:
        self._insert('goals', {
            'id': goal.id,
            'user_id': goal.user_id,
            'title': goal.title,
            'description': goal.description,
            'target_amount': float(goal.target_amount),
            'current_amount': float(goal.current_amount),
            'category': goal.category,
            'deadline': goal.deadline,
            'priority': goal.priority,
            'status': goal.status,
            'created_at': goal.created_at,
            'updated_at': goal.updated_at,
        })

    def fetch_goals(self, user_id: str) -> List[Goal]:
        rows = self._select(
            "SELECT * FROM goals WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [_row_to_goal(row) for row in rows]

    def update_goal(self, user_id: str, goal_id: str, updates: Dict[str, Any]) -> bool:
        return self._update('goals', {'id': goal_id, 'user_id': user_id}, updates)

    def delete_goal(self, user_id: str, goal_id: str) -> bool:
        return self._delete('goals', {'id': goal_id, 'user_id': user_id})

    # -- achievements ----------------------------------------------------------

    def fetch_achievements(self, user_id: str) -> List[Achievement]:
        rows = self._select(
            "SELECT * FROM achievements WHERE user_id = ? ORDER BY unlocked_at DESC",
            (user_id,),
        )
        return [_row_to_achievement(row) for row in rows]

    def save_achievement(self, achievement: Achievement) -> None:
        """Create or overwrite an achievement document (keyed by id)."""
        self._insert('achievements', {
            'id': achievement.id,
            'user_id': achievement.user_id,
            'title': achievement.title,
            'description': achievement.description,
            'icon': achievement.icon,
            'type': achievement.type,
            'criteria': achievement.criteria.to_dict(),
            'is_unlocked': achievement.is_unlocked,
            'unlocked_at': achievement.unlocked_at,
        }, replace=True)

    # -- posts -----------------------------------------------------------------

    def add_post(self, post: FinancePost) -> None:
        self._insert('posts', {
            'id': post.id,
            'title': post.title,
            'content': post.content,
            'category': post.category,
            'tags': list(post.tags),
            'author_id': post.author_id,
            'author_name': post.author_name,
            'status': post.status,
            'created_at': post.created_at,
            'approved_at': post.approved_at,
            'approved_by': post.approved_by,
            'likes': int(post.likes),
            'views': int(post.views),
            'featured': post.featured,
            'rejection_reason': post.rejection_reason,
        })

    def fetch_posts(self) -> List[FinancePost]:
        rows = self._select("SELECT * FROM posts ORDER BY created_at DESC")
        return [_row_to_post(row) for row in rows]

    def fetch_post(self, post_id: str) -> Optional[FinancePost]:
        rows = self._select("SELECT * FROM posts WHERE id = ?", (post_id,))
        return _row_to_post(rows[0]) if rows else None

    def count_posts(self) -> int:
        with self.connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM posts").fetchone()[0])

    def update_post(self, post_id: str, updates: Dict[str, Any]) -> bool:
        return self._update('posts', {'id': post_id}, updates)

    def delete_post(self, post_id: str) -> bool:
        return self._delete('posts', {'id': post_id})

    def increment_post_counter(self, post_id: str, column: str, by: int = 1) -> bool:
        return self._increment('posts', 'id', post_id, column, by)

    # -- user contributions ----------------------------------------------------

    def fetch_contribution(self, user_id: str) -> Optional[UserContribution]:
        rows = self._select("SELECT * FROM user_contributions WHERE user_id = ?", (user_id,))
        return _row_to_contribution(rows[0]) if rows else None

    def create_contribution(self, contribution: UserContribution) -> None:
        self._insert('user_contributions', {
            'user_id': contribution.user_id,
            'total_submissions': contribution.total_submissions,
            'approved_posts': contribution.approved_posts,
            'total_likes': contribution.total_likes,
            'badges': list(contribution.badges),
            'joined_at': contribution.joined_at,
        })

    def increment_contribution(self, user_id: str, column: str, by: int = 1) -> bool:
        return self._increment('user_contributions', 'user_id', user_id, column, by)
