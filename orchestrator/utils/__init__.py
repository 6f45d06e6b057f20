"""Utility modules."""

from orchestrator.utils.business_hours import (
    NoBusinessHoursConfigured,
    WeeklySchedule,
    is_open,
    next_open_instant,
    sunday_based_weekday,
)
from orchestrator.utils.conditions import (
    compare_values,
    evaluate_conditions,
    trigger_matches,
)

__all__ = [
    # Business hours
    "NoBusinessHoursConfigured",
    "WeeklySchedule",
    "is_open",
    "next_open_instant",
    "sunday_based_weekday",
    # Conditions
    "compare_values",
    "evaluate_conditions",
    "trigger_matches",
]
