"""
Fix Generator Tests
===================
Covers:
    - One suggestion per (file, message prefix) group
    - max_fixes cut-off
    - Priority → confidence (0.1 tie-break) → impact ordering
    - Template fields per category
    - Empty input and approval flag
"""
import asyncio

from debugloop.agents.fix_generator import (
    FixGenerator,
    group_errors,
    prioritize_fixes,
)
from debugloop.core.constants import PRIORITY_ORDER
from debugloop.models.fix_suggestion import FixSuggestion
from debugloop.models.remote_error import NormalizedError, SourceLocation


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _error(message, file="src/app.js", line=1, severity="high"):
    return NormalizedError(message=message, severity=severity, source=SourceLocation(file=file, line=line))


def _fix(priority, confidence, impact):
    return FixSuggestion(
        error_id="err-1", priority=priority, confidence=confidence, estimated_impact=impact,
    )


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------
def test_group_errors_by_file_and_message_prefix():
    errors = [
        _error("TypeError: a is null", line=1),
        _error("TypeError: b is null", line=2),
        _error("TypeError: a is null", file="src/other.js"),
        _error("RangeError: too deep"),
    ]
    groups = group_errors(errors)
    assert [len(g) for g in groups] == [2, 1, 1]


def test_repeated_failures_produce_one_suggestion():
    async def run_test():
        errors = [_error("TypeError: x is null", line=n) for n in range(5)]
        result = await FixGenerator().generate_fixes(errors)
        assert result.success
        assert len(result.fixes) == 1
        assert result.fixes[0].error_id == errors[0].id

    asyncio.run(run_test())


def test_max_fixes_stops_accumulation():
    async def run_test():
        errors = [_error(f"Error{n}: boom", file=f"f{n}.js") for n in range(6)]
        result = await FixGenerator().generate_fixes(errors, max_fixes=2)
        assert len(result.fixes) == 2

    asyncio.run(run_test())


def test_empty_input():
    async def run_test():
        result = await FixGenerator().generate_fixes([])
        assert result.success
        assert result.fixes == []
        assert result.reasoning == "No errors to fix"

    asyncio.run(run_test())


def test_suggestions_stay_pending():
    async def run_test():
        result = await FixGenerator().generate_fixes([_error("x is not defined")], require_approval=True)
        assert result.requires_approval
        assert all(f.status == "pending" for f in result.fixes)

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
def test_undefined_template_escalates_with_severity():
    async def run_test():
        gen = FixGenerator()
        critical = await gen.generate_fixes([_error("'cart' is not defined", severity="critical")])
        high = await gen.generate_fixes([_error("'cart' is not defined", severity="medium")])

        fix = critical.fixes[0]
        assert fix.category == "undefined-reference"
        assert fix.priority == "critical"
        assert fix.confidence == 0.85
        assert "typeof cart" in fix.fixed_code
        assert high.fixes[0].priority == "high"

    asyncio.run(run_test())


def test_module_template_is_dependency_update():
    async def run_test():
        result = await FixGenerator().generate_fixes([_error("Cannot find module 'dayjs'")])
        fix = result.fixes[0]
        assert fix.kind == "dependency-update"
        assert fix.dependency_name == "dayjs"
        assert fix.estimated_impact == "high"

    asyncio.run(run_test())


def test_unknown_category_uses_generic_template():
    async def run_test():
        result = await FixGenerator().generate_fixes([_error("Something odd")])
        assert result.fixes[0].category == "unknown"
        assert result.fixes[0].priority == "low"
        assert result.fixes[0].confidence == 0.6

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------
def test_generated_fixes_never_put_lower_priority_first():
    async def run_test():
        errors = [
            _error("Something odd", file="a.js"),
            _error("Network request failed", file="b.js"),
            _error("'x' is not defined", file="c.js", severity="critical"),
            _error("Unhandled promise rejection", file="d.js"),
            _error("Cannot read properties of null (reading 'y')", file="e.js"),
        ]
        result = await FixGenerator().generate_fixes(errors)
        ranks = [PRIORITY_ORDER.index(f.priority) for f in result.fixes]
        assert ranks == sorted(ranks, reverse=True)
        assert result.fixes[0].category == "undefined-reference"

    asyncio.run(run_test())


def test_confidence_breaks_ties_only_beyond_threshold():
    low_conf = _fix("high", 0.7, "low")
    high_conf = _fix("high", 0.95, "low")
    assert prioritize_fixes([low_conf, high_conf]) == [high_conf, low_conf]


def test_impact_decides_when_confidence_is_close():
    high_impact = _fix("high", 0.85, "high")
    low_impact = _fix("high", 0.9, "low")
    assert prioritize_fixes([low_impact, high_impact]) == [high_impact, low_impact]


def test_priority_dominates_confidence():
    medium = _fix("medium", 0.99, "high")
    critical = _fix("critical", 0.1, "low")
    assert prioritize_fixes([medium, critical]) == [critical, medium]


def test_reasoning_reports_counts():
    async def run_test():
        result = await FixGenerator().generate_fixes([_error("Unhandled promise rejection")])
        assert "Analyzed 1 error(s)" in result.reasoning
        assert "Average confidence: 95%" in result.reasoning

    asyncio.run(run_test())
