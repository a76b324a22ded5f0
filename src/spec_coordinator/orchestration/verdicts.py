"""Validator output parsing.

File: src/spec_coordinator/orchestration/verdicts.py

Purpose
- Turn raw validator CLI output into a classified Verdict.
- Render FAIL verdicts into the gap feedback handed to the next lead prompt.

Accepted shapes
- A bare ``{"response_block": {...}}`` object, or the response object itself.
- The same object wrapped in a CLI envelope (``{"result": "<json text>"}``), in
  a fenced ```json block, or as one line of JSONL event output (scanned from the end).
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Final

from spec_coordinator.domain.models import ValidatorResult, Verdict, VerdictStatus
from spec_coordinator.errors import ValidatorParseError

_FENCE_RE: Final[re.Pattern[str]] = re.compile(r"```(?:json)?\s*\n(?P<body>.*?)\n\s*```", re.DOTALL)
_ENVELOPE_KEYS: Final[tuple[str, ...]] = ("result", "response", "content", "text", "message")
_MAX_ENVELOPE_DEPTH: Final[int] = 4


def parse_verdict(output: str) -> Verdict:
    """Return a PASS/FAIL Verdict or raise ValidatorParseError."""
    last_error = "validator output missing required JSON response format"
    for candidate in _candidate_objects(output):
        try:
            return _verdict_from_object(candidate)
        except ValidatorParseError as exc:
            last_error = str(exc)
    raise ValidatorParseError(last_error)


def format_finding(finding: object) -> str:
    if not isinstance(finding, Mapping):
        return str(finding).strip() if finding not in (None, "") else ""
    requirement = _clean(finding.get("spec_requirement"))
    gap = _clean(finding.get("gap_description"))
    original = _clean(finding.get("original_code"))
    proposed = _clean(finding.get("proposed_diff"))
    parts = [
        f"Requirement: {requirement}" if requirement else "",
        f"Gap: {gap}" if gap else "",
        f"Original: {original or '(missing)'}",
        f"Proposed diff: {proposed or '(missing)'}",
    ]
    return " | ".join(part for part in parts if part)


def build_feedback(validations: Sequence[ValidatorResult]) -> str:
    """Gap summary for the next lead prompt, listing FAIL verdicts only."""
    failing = [item for item in validations if item.verdict.status is VerdictStatus.FAIL]
    if not failing:
        return ""
    lines = ["Validator gaps (detailed):"]
    for item in failing:
        if not item.verdict.gaps:
            lines.append(f"- {item.tool}: No gaps provided")
            continue
        lines.extend(f"- {item.tool}: {gap}" for gap in item.verdict.gaps)
    return "\n".join(lines)


def _verdict_from_object(payload: Mapping[str, object]) -> Verdict:
    response = payload.get("response_block", payload)
    if not isinstance(response, Mapping):
        raise ValidatorParseError("response_block must be a JSON object")

    status_raw = response.get("status")
    completeness_raw = response.get("completeness")
    if isinstance(status_raw, str):
        status_raw = status_raw.strip().upper()
    if status_raw not in (VerdictStatus.PASS.value, VerdictStatus.FAIL.value):
        raise ValidatorParseError("response_block.status must be PASS or FAIL")
    if isinstance(completeness_raw, bool) or not isinstance(completeness_raw, (int, float)):
        raise ValidatorParseError("response_block.completeness must be a number")
    if not math.isfinite(completeness_raw):
        raise ValidatorParseError("response_block.completeness must be finite")

    findings = response.get("findings")
    if not isinstance(findings, list):
        raise ValidatorParseError("response_block.findings must be an array")
    recommendations = response.get("recommendations", [])
    if not isinstance(recommendations, list):
        recommendations = []

    gaps = tuple(text for text in (format_finding(item) for item in findings) if text)
    return Verdict(
        status=VerdictStatus(status_raw),
        completeness=min(max(float(completeness_raw), 0.0), 100.0),
        gaps=gaps,
        recommendations=tuple(
            item.strip() for item in recommendations if isinstance(item, str) and item.strip()
        ),
    )


def _candidate_objects(output: str) -> Iterator[Mapping[str, object]]:
    text = output.strip()
    if not text:
        return
    yield from _unwrap(_try_json(text), depth=0)
    for match in _FENCE_RE.finditer(text):
        yield from _unwrap(_try_json(match.group("body").strip()), depth=0)
    for line in reversed(text.splitlines()):
        stripped = line.strip()
        if stripped.startswith("{"):
            yield from _unwrap(_try_json(stripped), depth=0)
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        yield from _unwrap(_try_json(text[start : end + 1]), depth=0)


def _unwrap(value: object, *, depth: int) -> Iterator[Mapping[str, object]]:
    """Yield ``value`` and any JSON objects nested in string envelope fields."""
    if depth > _MAX_ENVELOPE_DEPTH or not isinstance(value, Mapping):
        return
    if "response_block" in value or "status" in value:
        yield value
    for key in _ENVELOPE_KEYS:
        inner = value.get(key)
        if isinstance(inner, str):
            stripped = _strip_fence(inner.strip())
            yield from _unwrap(_try_json(stripped), depth=depth + 1)
        elif isinstance(inner, Mapping):
            yield from _unwrap(inner, depth=depth + 1)
    item = value.get("item")
    if isinstance(item, Mapping):
        yield from _unwrap(item, depth=depth + 1)


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group("body").strip() if match else text


def _try_json(text: str) -> object:
    if not text.startswith("{"):
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


__all__ = ["build_feedback", "format_finding", "parse_verdict"]
