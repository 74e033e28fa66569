"""Plotly figures for budget and progress views.

Each function takes one of the derived objects from :mod:`budget_stats` or
:mod:`progress` and returns a `plotly.graph_objects.Figure`.  Empty input
produces an empty figure titled "No data to display" instead of raising, so
callers can render whatever comes back.
"""

from __future__ import annotations

from typing import Optional, Sequence

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .models import BudgetStats, ExpenseTrend, Goal
from .progress import goal_status_counts

GOAL_STATUS_COLORS = {
    'active': '#3b82f6',
    'completed': '#10b981',
    'paused': '#f59e0b',
}


def _empty_figure() -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title="No data to display")
    return fig


def create_category_spending_chart(stats: Optional[BudgetStats], title: str | None = None) -> go.Figure:
    """Grouped bars of spent vs allocated amount per category.

    Parameters
    ----------
    stats : BudgetStats, optional
        Output of :func:`budget_stats.calculate_budget_stats`.
    title : str, optional
        Chart title.

    Returns
    -------
    plotly.graph_objects.Figure
        Bar chart with one "Allocated" and one "Spent" bar per category.
    """
    if stats is None or not stats.category_breakdown:
        return _empty_figure()
    names = [row.category_name for row in stats.category_breakdown]
    fig = go.Figure()
    fig.add_trace(go.Bar(
        name="Allocated",
        x=names,
        y=[row.allocated for row in stats.category_breakdown],
        marker_color="#d1d5db",
    ))
    fig.add_trace(go.Bar(
        name="Spent",
        x=names,
        y=[row.spent for row in stats.category_breakdown],
        marker_color=["#ef4444" if row.remaining < 0 else "#3b82f6" for row in stats.category_breakdown],
    ))
    fig.update_layout(
        title=title or "Spending by category",
        barmode="group",
        xaxis_title="Category",
        yaxis_title="Amount",
    )
    return fig


def create_goal_status_pie(goals: Sequence[Goal], title: str | None = None) -> go.Figure:
    """Pie chart of goal counts per status."""
    if not goals:
        return _empty_figure()
    counts = goal_status_counts(goals)
    counts = counts[counts > 0]
    df = counts.reset_index()
    df.columns = ["Status", "Goals"]
    fig = px.pie(
        df,
        names="Status",
        values="Goals",
        color="Status",
        color_discrete_map=GOAL_STATUS_COLORS,
    )
    fig.update_layout(title=title or "Goals by status")
    return fig


def create_spending_over_time_chart(daily: pd.Series, title: str | None = None) -> go.Figure:
    """Line chart of daily spend.

    ``daily`` is the series returned by :func:`budget_stats.spending_by_day`.
    """
    if daily.empty:
        return _empty_figure()
    df = daily.rename("Amount").reset_index()
    df.columns = ["Date", "Amount"]
    fig = px.line(df, x="Date", y="Amount", markers=True)
    fig.update_layout(
        title=title or "Spending over time",
        xaxis_title="Date",
        yaxis_title="Amount",
    )
    return fig


def create_trend_breakdown_chart(trends: Sequence[ExpenseTrend], title: str | None = None) -> go.Figure:
    """Stacked bars of per-category spend for each period in ``trends``."""
    rows = [
        {"Period": trend.month, "Category": cat.category_name, "Amount": cat.amount, "Color": cat.color}
        for trend in trends
        for cat in trend.category_breakdown
    ]
    if not rows:
        return _empty_figure()
    df = pd.DataFrame(rows)
    colors = dict(zip(df["Category"], df["Color"]))
    fig = px.bar(df, x="Period", y="Amount", color="Category", color_discrete_map=colors)
    fig.update_layout(title=title or "Spending by period", barmode="stack")
    return fig


def create_budget_gauge(stats: Optional[BudgetStats], title: str | None = None) -> go.Figure:
    """Gauge of the share of the total budget used so far."""
    if stats is None:
        return _empty_figure()
    value = stats.percentage_used
    fig = go.Figure(go.Indicator(
        mode="gauge+number",
        value=value,
        number={"suffix": "%", "valueformat": ".1f"},
        gauge={
            "axis": {"range": [0, max(100.0, value)]},
            "bar": {"color": "#ef4444" if stats.is_over_budget else "#10b981"},
            "steps": [
                {"range": [0, 75], "color": "#ecfdf5"},
                {"range": [75, 100], "color": "#fef3c7"},
            ],
            "threshold": {"line": {"color": "#ef4444", "width": 3}, "value": 100},
        },
    ))
    fig.update_layout(title=title or "Budget used")
    return fig
