"""Top-level package for BudgetSmart.

BudgetSmart is the core of a personal-finance app: a budget tracker, a
goals and achievements tracker and a moderated feed of finance tips.  The
primary modules are:

* ``budget_stats`` - spend, remaining and percentage figures for a budget
* ``progress`` and ``achievements`` - goal progress, trends and unlocks
* ``posts`` - filtering, sorting and moderation views over tip posts
* ``services`` - session-scoped operations backed by the sqlite store
* ``visualization`` - functions that generate Plotly figures

A quick report for one user can be printed with:

```bash
python scripts/budget_report.py --user <user-id>
```
"""

from . import budget_stats  # noqa: F401  # re-exported for convenience
from . import progress  # noqa: F401  # re-exported for convenience
from . import posts  # noqa: F401  # re-exported for convenience
from .budget_stats import BudgetSnapshot, calculate_budget_stats
from .progress import calculate_progress_stats
from .posts import filter_posts
from .services import BudgetService, LearnFinanceService, ProgressService, Session

__version__ = "0.1.0"

__all__ = [
    "budget_stats",
    "progress",
    "posts",
    "BudgetSnapshot",
    "calculate_budget_stats",
    "calculate_progress_stats",
    "filter_posts",
    "BudgetService",
    "ProgressService",
    "LearnFinanceService",
    "Session",
]
