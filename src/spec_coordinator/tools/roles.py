"""Lead/validator role assignment over the detected tool set."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from spec_coordinator.constants import LEAD_PREFERENCE
from spec_coordinator.errors import (
    NoLeadAvailableError,
    NoValidatorsAvailableError,
    RoleAssignmentError,
    ToolUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    lead: str
    validators: tuple[str, ...]


def assign_roles(
    available: Sequence[str],
    requested_lead: str | None = None,
    requested_validators: Sequence[str] | None = None,
) -> RoleAssignment:
    """Split ``available`` tools into one lead and at least one validator.

    The lead never validates its own work. Requested tools must be available;
    defaults follow ``LEAD_PREFERENCE``.
    """
    unique = tuple(dict.fromkeys(available))
    if len(unique) < 2:
        raise NoValidatorsAvailableError(
            f"at least 2 AI tools are required (found: {', '.join(unique) or 'none'})"
        )

    if requested_lead and requested_lead not in unique:
        raise ToolUnavailableError(requested_lead, unique)
    for validator in requested_validators or ():
        if validator not in unique:
            raise ToolUnavailableError(validator, unique)

    lead = requested_lead or next((tool for tool in LEAD_PREFERENCE if tool in unique), None)
    if lead is None:
        raise NoLeadAvailableError(
            f"none of the preferred lead tools is available ({', '.join(LEAD_PREFERENCE)})"
        )

    if requested_validators:
        candidates = tuple(dict.fromkeys(requested_validators))
    else:
        candidates = _preference_sorted(unique)
    validators = tuple(tool for tool in candidates if tool != lead)
    if not validators:
        raise NoValidatorsAvailableError(f"no validator remains once {lead!r} leads")

    return RoleAssignment(lead=lead, validators=validators)


def normalize_resumed_roles(
    session_lead: str,
    session_validators: Sequence[str],
    available: Sequence[str],
) -> RoleAssignment:
    """Keep a resumed session's roles when still runnable, else re-derive them."""
    available_set = set(available)
    if session_lead in available_set:
        validators = tuple(
            tool for tool in session_validators if tool in available_set and tool != session_lead
        )
        if validators:
            return RoleAssignment(lead=session_lead, validators=validators)
        logger.info("stored validators unavailable; re-deriving validators for lead %s", session_lead)
        try:
            return assign_roles(available, requested_lead=session_lead)
        except RoleAssignmentError:
            logger.info("cannot keep lead %s; re-deriving all roles", session_lead)
    return assign_roles(available)


def next_lead_candidate(available: Sequence[str], tried: Sequence[str]) -> str | None:
    """Pick the next untried lead, in preference order, after a rate limit."""
    excluded = set(tried)
    for tool in _preference_sorted(tuple(dict.fromkeys(available))):
        if tool not in excluded:
            return tool
    return None


def reassign_lead(
    new_lead: str,
    validators: Sequence[str],
    available: Sequence[str],
) -> RoleAssignment:
    """Promote ``new_lead`` and drop it from the validator set.

    When no stored validator remains, every other available tool validates.
    """
    remaining = tuple(tool for tool in validators if tool != new_lead)
    if not remaining:
        remaining = tuple(tool for tool in _preference_sorted(available) if tool != new_lead)
    if not remaining:
        raise NoValidatorsAvailableError(f"no validator remains once {new_lead!r} leads")
    return RoleAssignment(lead=new_lead, validators=remaining)


def _preference_sorted(tools: Sequence[str]) -> tuple[str, ...]:
    rank = {name: index for index, name in enumerate(LEAD_PREFERENCE)}
    return tuple(sorted(tools, key=lambda tool: (rank.get(tool, len(rank)), tool)))


__all__ = [
    "RoleAssignment",
    "assign_roles",
    "next_lead_candidate",
    "normalize_resumed_roles",
    "reassign_lead",
]
