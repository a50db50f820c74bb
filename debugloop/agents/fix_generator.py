"""
Fix Generator
=============
Turns the normalised errors of one monitoring window into ranked fix
suggestions.

Pipeline (per generate_fixes call):
    1. Group errors by (file, first message segment) → one suggestion per group
    2. Classify the group's representative error (ordered keyword table)
    3. Fill the category template: explanation, reasoning, code sketch,
       fixed confidence, estimated impact
    4. Stop accumulating once max_fixes suggestions exist
    5. Sort: priority desc → confidence desc (gap > 0.1 only) → impact desc

The FixGenerator does NOT:
    - Apply fixes (that's the fix applicator's job)
    - Decide whether fixes are applied (the orchestrator reads requires_approval)
    - Call an LLM; templates are deterministic
"""
import logging
import re
from collections import OrderedDict
from functools import cmp_to_key
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from debugloop.core.constants import CONFIDENCE_TIE_BREAK, IMPACT_ORDER, PRIORITY_ORDER
from debugloop.models.fix_suggestion import FixSuggestion
from debugloop.models.remote_error import NormalizedError
from debugloop.parser import classification as cls
from debugloop.utils.error_signature import error_group_key

logger = logging.getLogger(__name__)


class FixGenerationResult(BaseModel):
    success: bool
    fixes: List[FixSuggestion] = []
    reasoning: str = ""
    requires_approval: bool = True
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Category templates
# ---------------------------------------------------------------------------
_UNDEFINED_RE = re.compile(r"'(.+?)' is (?:undefined|not defined)")
_NULL_READ_RE = re.compile(r"Cannot read propert(?:y|ies) of (.+?) \(reading '(.+?)'\)")
_MODULE_RE = re.compile(r"[Mm]odule '(.+?)' not found|Cannot find module '(.+?)'")


def _undefined_fix(error: NormalizedError) -> FixSuggestion:
    match = _UNDEFINED_RE.search(error.message)
    name = match.group(1) if match else "unknown"
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.UNDEFINED_REFERENCE,
        priority="critical" if error.severity == "critical" else "high",
        file=error.source.file,
        original_code=f"console.log({name});",
        fixed_code=(
            f"// Check if {name} exists before using\n"
            f"if (typeof {name} !== 'undefined') {{\n  console.log({name});\n}}"
        ),
        line_start=error.source.line,
        line_end=error.source.line,
        explanation=(
            f"Variable '{name}' is undefined when accessed. Add a guard or "
            "initialize the variable before use."
        ),
        confidence=0.85,
        reasoning=(
            f"{name} is accessed before being defined or initialized. A type "
            "check prevents the runtime error while tolerating the undefined case."
        ),
        estimated_impact="low",
    )


def _null_reference_fix(error: NormalizedError) -> FixSuggestion:
    match = _NULL_READ_RE.search(error.message)
    holder = match.group(1) if match else "object"
    prop = match.group(2) if match else "property"
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.NULL_REFERENCE,
        priority="high",
        file=error.source.file,
        original_code=f"const value = {holder}.{prop};",
        fixed_code=f"const value = {holder}?.{prop};",
        line_start=error.source.line,
        line_end=error.source.line,
        explanation="Optional chaining (?.) prevents null reference errors when accessing nested properties.",
        confidence=0.9,
        reasoning="Optional chaining navigates possibly null or undefined objects without throwing.",
        estimated_impact="low",
    )


def _type_fix(error: NormalizedError) -> FixSuggestion:
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.TYPE_MISMATCH,
        priority="medium",
        file=error.source.file,
        original_code="// Type error here",
        fixed_code="// Add proper type annotations\nconst value: string | null = null;",
        line_start=error.source.line,
        line_end=error.source.line,
        explanation="Add explicit type annotations to resolve the type error.",
        confidence=0.8,
        reasoning="The compiler cannot infer a compatible type here; an explicit annotation resolves it.",
        estimated_impact="medium",
    )


def _async_fix(error: NormalizedError) -> FixSuggestion:
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.MISSING_AWAIT,
        priority="high",
        file=error.source.file,
        original_code="const data = fetch(url);\nconsole.log(data);",
        fixed_code="const data = await fetch(url);\nconsole.log(data);",
        line_start=error.source.line,
        line_end=error.source.line + 1,
        explanation="Missing await keyword when calling an async function.",
        confidence=0.95,
        reasoning=(
            "Async functions return promises that must be awaited; without await "
            "execution continues before the operation completes."
        ),
        estimated_impact="high",
    )


def _module_fix(error: NormalizedError) -> FixSuggestion:
    match = _MODULE_RE.search(error.message)
    module = (match.group(1) or match.group(2)) if match else "unknown"
    return FixSuggestion(
        error_id=error.id,
        kind="dependency-update",
        category=cls.MISSING_MODULE,
        priority="high",
        dependency_name=module,
        current_version="not installed",
        suggested_version="latest",
        explanation=f"Module '{module}' is not installed or not imported correctly.",
        confidence=0.9,
        reasoning=f"'{module}' must be installed as a dependency and imported where it is used.",
        estimated_impact="high",
    )


def _network_fix(error: NormalizedError) -> FixSuggestion:
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.NETWORK_FAILURE,
        priority="medium",
        file=error.source.file,
        original_code="fetch(url)",
        fixed_code=(
            "fetch(url, {\n  signal: AbortSignal.timeout(10000),\n}).catch(async err => {\n"
            "  if (err.name === \"AbortError\") {\n    return fetch(url);\n  }\n  throw err;\n});"
        ),
        line_start=error.source.line,
        line_end=error.source.line,
        explanation="Add timeout and retry logic for network requests.",
        confidence=0.75,
        reasoning="Requests fail on timeouts and transient outages; a timeout plus one retry improves reliability.",
        estimated_impact="medium",
    )


def _api_fix(error: NormalizedError) -> FixSuggestion:
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.MALFORMED_API_CALL,
        priority="high",
        file=error.source.file,
        original_code="fetch(url)",
        fixed_code=(
            "fetch(url).then(res => {\n  if (!res.ok) {\n"
            "    throw new Error(`API error: ${res.status}`);\n  }\n  return res.json();\n"
            "}).catch(err => {\n  console.error(\"API request failed:\", err);\n  throw err;\n});"
        ),
        line_start=error.source.line,
        line_end=error.source.line,
        explanation="Add proper error handling for API requests.",
        confidence=0.85,
        reasoning="Unchecked API responses surface as unhandled rejections; checking status gives a clear failure.",
        estimated_impact="medium",
    )


def _generic_fix(error: NormalizedError) -> FixSuggestion:
    return FixSuggestion(
        error_id=error.id,
        kind="code-change",
        category=cls.UNKNOWN,
        priority="low",
        file=error.source.file,
        original_code="// code with error",
        fixed_code="try {\n  // original code\n} catch (err) {\n  console.error(\"Error:\", err);\n}",
        line_start=error.source.line,
        line_end=error.source.line,
        explanation="Add error handling to prevent uncaught exceptions.",
        confidence=0.6,
        reasoning="A try/catch keeps the failure from crashing the application and logs it.",
        estimated_impact="low",
    )


FIX_TEMPLATES: Dict[str, Callable[[NormalizedError], FixSuggestion]] = {
    cls.UNDEFINED_REFERENCE: _undefined_fix,
    cls.NULL_REFERENCE:      _null_reference_fix,
    cls.TYPE_MISMATCH:       _type_fix,
    cls.MISSING_AWAIT:       _async_fix,
    cls.MISSING_MODULE:      _module_fix,
    cls.NETWORK_FAILURE:     _network_fix,
    cls.MALFORMED_API_CALL:  _api_fix,
    cls.UNKNOWN:             _generic_fix,
}


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------
def _compare_fixes(a: FixSuggestion, b: FixSuggestion) -> int:
    priority_diff = PRIORITY_ORDER.index(b.priority) - PRIORITY_ORDER.index(a.priority)
    if priority_diff != 0:
        return priority_diff

    confidence_diff = b.confidence - a.confidence
    if abs(confidence_diff) > CONFIDENCE_TIE_BREAK:
        return 1 if confidence_diff > 0 else -1

    return IMPACT_ORDER.index(b.estimated_impact) - IMPACT_ORDER.index(a.estimated_impact)


def prioritize_fixes(fixes: List[FixSuggestion]) -> List[FixSuggestion]:
    """Return fixes sorted by priority, then confidence, then impact (all descending)."""
    return sorted(fixes, key=cmp_to_key(_compare_fixes))


def group_errors(errors: List[NormalizedError]) -> List[List[NormalizedError]]:
    """Group errors by (file, first message segment), preserving first-seen order."""
    groups: "OrderedDict[Tuple[str, str], List[NormalizedError]]" = OrderedDict()
    for error in errors:
        groups.setdefault(error_group_key(error), []).append(error)
    return list(groups.values())


def summarize_reasoning(fixes: List[FixSuggestion], errors: List[NormalizedError]) -> str:
    critical = sum(1 for f in fixes if f.priority == "critical")
    high = sum(1 for f in fixes if f.priority == "high")
    summary = (
        f"Analyzed {len(errors)} error(s) and generated {len(fixes)} fix suggestion(s). "
        f"{critical} critical, {high} high priority fixes were identified. "
    )
    if fixes:
        avg_confidence = sum(f.confidence for f in fixes) / len(fixes)
        summary += f"Average confidence: {avg_confidence * 100:.0f}%. "
    return summary


# ---------------------------------------------------------------------------
# Fix Generator
# ---------------------------------------------------------------------------
class FixGenerator:
    """
    Deterministic, template-driven fix generator.

    Parameters
    ----------
    provider : str
        Configured fix-generation provider. Recorded for reporting; every
        provider is served by the local template engine.
    model : str or None
        Provider model name, if any.
    """

    def __init__(self, provider: str = "local", model: Optional[str] = None) -> None:
        self.provider = provider
        self.model = model
        if provider != "local":
            logger.info("Fix provider '%s' configured; using local fix templates", provider)

    async def generate_fixes(
        self,
        errors: List[NormalizedError],
        max_fixes: Optional[int] = None,
        require_approval: bool = True,
    ) -> FixGenerationResult:
        """
        Generate ranked fix suggestions for a window's errors.

        Parameters
        ----------
        errors : list of NormalizedError
            Deduplicated, filtered errors from one monitoring window.
        max_fixes : int or None
            Stop once this many suggestions have accumulated.
        require_approval : bool
            True leaves suggestions pending for external confirmation.

        Returns
        -------
        FixGenerationResult
            success=False with `error` set if generation raised.
        """
        if not errors:
            return FixGenerationResult(
                success=True, reasoning="No errors to fix", requires_approval=require_approval,
            )

        try:
            fixes: List[FixSuggestion] = []
            for group in group_errors(errors):
                representative = group[0]
                category = cls.classify_error(representative)
                fixes.append(FIX_TEMPLATES[category](representative))
                logger.debug(
                    "Group %s:%s (%d error(s)) classified as %s",
                    representative.source.file, representative.source.line, len(group), category,
                )
                if max_fixes and len(fixes) >= max_fixes:
                    break

            fixes = prioritize_fixes(fixes)
            return FixGenerationResult(
                success=True,
                fixes=fixes,
                reasoning=summarize_reasoning(fixes, errors),
                requires_approval=require_approval,
            )
        except Exception as exc:
            logger.error("Fix generation failed: %s", exc, exc_info=True)
            return FixGenerationResult(
                success=False, reasoning="", requires_approval=require_approval, error=str(exc),
            )
