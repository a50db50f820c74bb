"""
Error Signature Utility
=======================
Stable keys for matching NormalizedErrors.

Identity:
    (message, source.file, source.line)
    Identifies the same error across repeats within one monitoring session.
    The generated error id is never part of it.

Group Key:
    (source.file, first ":"-separated segment of the message)
    Collapses repeated failures of one kind in one file so the fix generator
    emits one suggestion per group, not one per error.

Signature:
    Short SHA-256 digest of the identity, for logs and dashboards.
"""
import hashlib
from typing import Tuple

from debugloop.models.remote_error import NormalizedError


def error_identity(error: NormalizedError) -> Tuple[str, str, int]:
    return (error.message, error.source.file, error.source.line)


def error_group_key(error: NormalizedError) -> Tuple[str, str]:
    """Return the fix-generation grouping key for an error."""
    return (error.source.file, error.message.split(":")[0])


def error_signature(error: NormalizedError) -> str:
    """
    Generate a stable, compact signature for an error's identity.

    Parameters
    ----------
    error : NormalizedError
        The error to fingerprint.

    Returns
    -------
    str
        16-character hex digest of message + file + line.
    """
    raw = f"{error.message}:{error.source.file}:{error.source.line}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
