"""Second-level cron expression engine"""

from .parser import (
    CronExpressionError,
    NoMatchFound,
    get_next_run_time,
    get_next_run_times,
    normalize_expression,
    parse,
    validate,
)

__all__ = [
    "CronExpressionError",
    "NoMatchFound",
    "get_next_run_time",
    "get_next_run_times",
    "normalize_expression",
    "parse",
    "validate",
]
