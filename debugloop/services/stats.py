"""
Stats Service
=============
Derives DebugLoopStats from the iteration history.

Stats are never stored; every call recomputes them from the history list so
they cannot drift from what the loop actually recorded.
"""
import time
from collections import Counter
from typing import Dict, List, Optional, Tuple

from debugloop.core.constants import MOST_COMMON_ERRORS_LIMIT
from debugloop.models.iteration import Iteration
from debugloop.models.loop_result import CommonError, DebugLoopStats


def compute_stats(history: List[Iteration], start_time: Optional[float] = None) -> DebugLoopStats:
    """
    Aggregate an iteration history.

    Parameters
    ----------
    history : list of Iteration
        Ordered iteration history of one run.
    start_time : float or None
        time.time() at loop start; total_duration is 0 when not started.

    Returns
    -------
    DebugLoopStats
        errors_remaining comes from the latest iteration; success_rate is the
        percentage of iterations that ended with zero errors.
    """
    if not history:
        return DebugLoopStats(total_duration=(time.time() - start_time) if start_time else 0.0)

    by_category: Counter = Counter()
    by_severity: Counter = Counter()
    occurrences: Dict[Tuple[str, str], int] = {}
    degraded: List[str] = []

    for iteration in history:
        for error in iteration.errors:
            by_category[error.category] += 1
            by_severity[error.severity] += 1
            key = (error.message, error.source.file)
            occurrences[key] = occurrences.get(key, 0) + error.occurrence_count
        for source in iteration.degraded_sources:
            if source not in degraded:
                degraded.append(source)

    # sorted() is stable: ties keep first-seen order
    ranked = sorted(occurrences.items(), key=lambda item: item[1], reverse=True)
    most_common = [
        CommonError(message=message, file=file, count=count)
        for (message, file), count in ranked[:MOST_COMMON_ERRORS_LIMIT]
    ]

    completed = sum(1 for it in history if it.outcome == "completed")
    return DebugLoopStats(
        total_iterations=len(history),
        total_errors_fixed=sum(len(it.fixes_applied) for it in history),
        total_errors_remaining=history[-1].error_count,
        average_iteration_duration=sum(it.duration for it in history) / len(history),
        total_duration=(time.time() - start_time) if start_time else 0.0,
        success_rate=completed / len(history) * 100,
        by_category=dict(by_category),
        by_severity=dict(by_severity),
        most_common_errors=most_common,
        degraded_sources=degraded,
    )
