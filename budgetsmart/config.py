"""Configuration management for BudgetSmart.

This module centralizes all configuration values including paths,
defaults, and environment variable overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import FrozenSet

# Base project root - assumes this file is in budgetsmart/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("BUDGETSMART_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("BUDGETSMART_DB_PATH", DATA_DIR / "budgetsmart.db")
).resolve()

# Users allowed to moderate the learn-finance feed
ADMIN_USER_IDS: FrozenSet[str] = frozenset(
    uid.strip()
    for uid in os.getenv("BUDGETSMART_ADMIN_IDS", "").split(",")
    if uid.strip()
)

CURRENCY_SYMBOL = os.getenv("BUDGETSMART_CURRENCY", "$")

UNKNOWN_CATEGORY = "Unknown Category"
DEFAULT_CATEGORY_COLOR = "#6b7280"


def ensure_data_directories() -> None:
    """Create the data directory if it doesn't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def is_admin(user_id: str | None) -> bool:
    return bool(user_id) and user_id in ADMIN_USER_IDS
