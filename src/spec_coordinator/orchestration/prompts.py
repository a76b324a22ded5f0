"""Prompt construction for lead, validator and format-recovery invocations.

Prompts are jinja2 templates rendered with ``StrictUndefined`` so a missing
variable fails loudly instead of producing a silently truncated prompt. Spec
text and codebase content are passed as variables and never parsed as
template source.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path
from typing import Final

from jinja2 import Environment, StrictUndefined, Template

from spec_coordinator.constants import IGNORED_TREE_DIRS
from spec_coordinator.utils.fs import list_tree_files, looks_like_text

SUMMARY_FILE_LIMIT: Final[int] = 50
CONTENT_FILE_LIMIT: Final[int] = 100
CONTENT_FILE_MAX_BYTES: Final[int] = 50_000

_RESPONSE_SCHEMA: Final[str] = """{
  "completeness": number,
  "status": "PASS" | "FAIL",
  "findings": [
    {
      "spec_requirement": string,
      "gap_description": string,
      "original_code": string,
      "proposed_diff": string
    }
  ],
  "recommendations": [string]
}"""

_ENVIRONMENT: Final[Environment] = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=False,
    lstrip_blocks=False,
    newline_sequence="\n",
    keep_trailing_newline=True,
)

_LEAD_INITIAL: Final[Template] = _ENVIRONMENT.from_string(
    """You are implementing a feature defined in the project specs.

Target spec: {{ spec_ref }}

Instructions:
1. Read the target spec and any relevant supporting specs (system-*.md, architecture, schema).
2. Implement the requirements in that spec end-to-end.
3. Follow the acceptance criteria precisely.
4. Explain significant implementation decisions.

{{ context }}{{ history }}

TARGET SPEC CONTENT:
{{ spec_content }}

CURRENT CODEBASE STATE (summary):
{{ codebase_summary }}"""
)

_LEAD_FOLLOW_UP: Final[Template] = _ENVIRONMENT.from_string(
    """You are continuing implementation based on validator feedback.

Target spec: {{ spec_ref }}

Instructions:
1. Read the target spec and any relevant supporting specs (system-*.md, architecture, schema).
2. Read and understand the existing codebase.
3. Resolve each gap listed below using concrete code changes only.
4. Do not re-implement features that already meet the spec unless required by a gap.
5. Explain significant implementation decisions.

{{ context }}{{ history }}

TARGET SPEC CONTENT:
{{ spec_content }}

CURRENT CODEBASE STATE (summary):
{{ codebase_summary }}

VALIDATOR GAPS TO RESOLVE:
{{ feedback }}"""
)

_VALIDATION: Final[Template] = _ENVIRONMENT.from_string(
    """You are validating an implementation against its specification.

Target spec: {{ spec_ref }}

Act as a strict reviewer: find edge cases, type holes, exception paths, security \
issues, and behavior mismatches. Propose a concrete diff for each finding.

Instructions:
1. Read the target spec and any relevant supporting specs (system-*.md, architecture, schema).
2. Read the codebase thoroughly.
3. Compare implementation to each requirement in the spec.
4. Identify gaps, missing features, or deviations.
5. Rate implementation completeness (0-100%).
6. Produce findings with exact references and proposed code changes.

{{ context }}

TARGET SPEC CONTENT:
{{ spec_content }}

IMPLEMENTATION (current codebase):
{{ codebase_content }}

STRICT OUTPUT REQUIRED: Return ONLY a single JSON object with exactly one key named "response_block".
The value MUST be an object with the following shape:
{{ response_schema }}

Do not include any other text or markdown."""
)

_FORMAT_RECOVERY: Final[Template] = _ENVIRONMENT.from_string(
    """{{ prompt }}

FORMAT RECOVERY: You must return ONLY JSON with one key "response_block".
The value must be an object with completeness/status/findings/recommendations as specified."""
)


def summarize_codebase(root: Path) -> str:
    """Relative paths of up to ``SUMMARY_FILE_LIMIT`` project files."""
    files = list_tree_files(root, ignored_dirs=IGNORED_TREE_DIRS, limit=SUMMARY_FILE_LIMIT)
    if not files:
        return "(no implementation files yet)"
    return "\n".join(_relative(path, root) for path in files)


def read_codebase_content(root: Path) -> str:
    """Concatenate small text files under ``root`` for validator review."""
    chunks: list[str] = []
    for path in list_tree_files(root, ignored_dirs=IGNORED_TREE_DIRS, limit=CONTENT_FILE_LIMIT):
        try:
            if path.stat().st_size > CONTENT_FILE_MAX_BYTES:
                continue
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        if not looks_like_text(content):
            continue
        chunks.append(f"# {_relative(path, root)}\n{content}")
    return "\n\n".join(chunks) if chunks else "(no implementation files yet)"


def build_lead_prompt(
    *,
    spec_ref: str,
    spec_content: str,
    context_docs: Sequence[str],
    feedback: str,
    codebase_summary: str,
    previous_reports: Sequence[str] = (),
    report_history: str = "",
) -> str:
    template = _LEAD_FOLLOW_UP if feedback else _LEAD_INITIAL
    return template.render(
        spec_ref=spec_ref,
        spec_content=spec_content,
        context=_context_hint(context_docs),
        history=_report_history(previous_reports, report_history),
        codebase_summary=codebase_summary,
        feedback=feedback,
    )


def build_validation_prompt(
    *,
    spec_ref: str,
    spec_content: str,
    context_docs: Sequence[str],
    codebase_content: str,
) -> str:
    return _VALIDATION.render(
        spec_ref=spec_ref,
        spec_content=spec_content,
        context=_context_hint(context_docs),
        codebase_content=codebase_content,
        response_schema=_RESPONSE_SCHEMA,
    )


def build_format_recovery_prompt(prompt: str) -> str:
    return _FORMAT_RECOVERY.render(prompt=prompt)


def _context_hint(context_docs: Sequence[str]) -> str:
    if context_docs:
        listed = ", ".join(context_docs)
        return f"System/architecture specs are present and should be used for context: {listed}."
    return "Use any relevant supporting specs in the specs directory for context."


def _report_history(previous_reports: Sequence[str], report_history: str) -> str:
    sections: list[str] = []
    if previous_reports:
        listed = "\n".join(f"- {path}" for path in previous_reports)
        sections.append(f"Previous validation reports:\n{listed}")
    if report_history:
        sections.append(f"PREVIOUS REPORT CONTENT (most recent first):\n{report_history}")
    return "".join(f"\n\n{section}" for section in sections)


def _relative(path: Path, root: Path) -> str:
    return Path(os.path.relpath(path, root)).as_posix()


__all__ = [
    "build_format_recovery_prompt",
    "build_lead_prompt",
    "build_validation_prompt",
    "read_codebase_content",
    "summarize_codebase",
]
