"""
Constants
Centralised orderings for severities, priorities and impacts, plus naming rules.
"""
SEVERITY_ORDER = ["low", "medium", "high", "critical"]
PRIORITY_ORDER = ["low", "medium", "high", "critical"]
IMPACT_ORDER = ["low", "medium", "high"]

# Confidence gap below which two fixes count as equally confident when sorting
CONFIDENCE_TIE_BREAK = 0.1

# Distinct errors reported in DebugLoopStats.most_common_errors
MOST_COMMON_ERRORS_LIMIT = 5

BACKUP_BRANCH_PREFIX = "debug-loop-iter-"
COMMIT_MESSAGE_TEMPLATE = "Debug loop iteration {iteration}"


def severity_rank(severity: str) -> int:
    """Return the position of a severity in SEVERITY_ORDER (-1 if unknown)."""
    try:
        return SEVERITY_ORDER.index(severity)
    except ValueError:
        return -1
