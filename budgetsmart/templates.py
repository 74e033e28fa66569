"""Budget-mode templates and seed content loaded from ``defaults/``."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List

from .models import BUDGET_MODES, Category

# Configuration directory
DEFAULTS_DIR = Path(__file__).parent / 'defaults'


def load_defaults(name: str) -> Any:
    """Load a JSON defaults file by name.

    Args:
        name: Name of the file (without .json extension)

    Raises:
        FileNotFoundError: If the file doesn't exist
        json.JSONDecodeError: If the file is invalid JSON

    Example:
        >>> load_defaults('budget_templates')['student']['title']
        'Student'
    """
    path = DEFAULTS_DIR / f"{name}.json"
    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    with path.open('r', encoding='utf-8') as handle:
        return json.load(handle)


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


def budget_templates() -> Dict[str, Dict[str, Any]]:
    return load_defaults('budget_templates')


def template_categories(mode: str) -> List[Category]:
    """Fresh categories (with new ids) for a budget mode."""
    if mode not in BUDGET_MODES:
        raise ValueError(f"Unknown budget mode '{mode}'")
    entries = budget_templates()[mode]['categories']
    return [
        Category(
            id=generate_id(),
            name=entry['name'],
            allocated_amount=float(entry['allocated_amount']),
            color=entry.get('color'),
            icon=entry.get('icon'),
        )
        for entry in entries
    ]


def suggested_total(categories: List[Category]) -> float:
    """The wizard's suggested total: the sum of the category allocations."""
    return float(sum(cat.allocated_amount for cat in categories))


def default_learning_posts() -> List[Dict[str, Any]]:
    return load_defaults('learning_posts')
