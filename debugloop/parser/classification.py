"""
Classification
==============
Maps a NormalizedError to one fix category.

Allowed Categories:
    undefined-reference, null-reference, type-mismatch, missing-await,
    missing-module, network-failure, malformed-api-call, unknown

Classification Strategy:
    1. ORDERED KEYWORD TABLE — lowercase substring checks against the
       message (and, per rule, the stack text or source file)
    2. FIRST MATCH WINS — rule order is significant
    3. FALLBACK — "unknown"; never dynamic inference or LLM
"""
from dataclasses import dataclass
from typing import Tuple

from debugloop.models.remote_error import NormalizedError


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------
UNDEFINED_REFERENCE = "undefined-reference"
NULL_REFERENCE = "null-reference"
TYPE_MISMATCH = "type-mismatch"
MISSING_AWAIT = "missing-await"
MISSING_MODULE = "missing-module"
NETWORK_FAILURE = "network-failure"
MALFORMED_API_CALL = "malformed-api-call"
UNKNOWN = "unknown"

ALL_CATEGORIES = (
    UNDEFINED_REFERENCE,
    NULL_REFERENCE,
    TYPE_MISMATCH,
    MISSING_AWAIT,
    MISSING_MODULE,
    NETWORK_FAILURE,
    MALFORMED_API_CALL,
    UNKNOWN,
)


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class _Rule:
    """
    A rule matches when any `message_any` keyword is in the message (or any
    `file_any` keyword is in the source file), AND, if `stack_all` is set,
    every `stack_all` keyword is in the stack text.
    """
    category: str
    message_any: Tuple[str, ...]
    stack_all: Tuple[str, ...] = ()
    file_any: Tuple[str, ...] = ()

    def matches(self, message: str, stack: str, file: str) -> bool:
        hit = any(kw in message for kw in self.message_any) or any(
            kw in file for kw in self.file_any
        )
        if not hit:
            return False
        return all(kw in stack for kw in self.stack_all)


# ---------------------------------------------------------------------------
# Ordered keyword table (first match wins)
# ---------------------------------------------------------------------------
_RULES: Tuple[_Rule, ...] = (
    _Rule(UNDEFINED_REFERENCE, ("undefined", "not defined")),
    _Rule(NULL_REFERENCE,      ("null", "null reference")),
    _Rule(TYPE_MISMATCH,       ("type",), stack_all=("typescript",)),
    _Rule(MISSING_AWAIT,       ("async", "promise", "await")),
    _Rule(MISSING_MODULE,      ("module", "import", "require")),
    _Rule(NETWORK_FAILURE,     ("network", "fetch", "axios")),
    _Rule(MALFORMED_API_CALL,  ("api",), file_any=("api",)),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def classify_error(error: NormalizedError) -> str:
    """
    Classify an error into one fix category.

    Parameters
    ----------
    error : NormalizedError
        The representative error of a group.

    Returns
    -------
    str
        One of ALL_CATEGORIES; UNKNOWN when no rule matches.
    """
    message = error.message.lower()
    stack = (error.stack or "").lower()
    file = error.source.file.lower()

    for rule in _RULES:
        if rule.matches(message, stack, file):
            return rule.category
    return UNKNOWN
