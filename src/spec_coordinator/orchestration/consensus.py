"""Consensus evaluation over validator verdicts."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Final

from spec_coordinator.domain.models import VerdictStatus

# Absolute PASS floor once three or more validators vote.
_MAJORITY_FLOOR: Final[int] = 2


@dataclass(frozen=True, slots=True)
class ConsensusOutcome:
    reached: bool
    passed: int
    failed: int
    errored: int

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.errored


def evaluate_consensus(statuses: Iterable[VerdictStatus]) -> ConsensusOutcome:
    """Tally verdicts; ERROR never counts toward PASS.

    | validators | reached when      |
    |------------|-------------------|
    | 0          | never             |
    | 1          | it passes         |
    | 2          | both pass         |
    | >= 3       | at least 2 pass   |
    """
    passed = failed = errored = 0
    for status in statuses:
        if status is VerdictStatus.PASS:
            passed += 1
        elif status is VerdictStatus.FAIL:
            failed += 1
        else:
            errored += 1

    total = passed + failed + errored
    if total == 0:
        reached = False
    elif total <= 2:
        reached = passed == total
    else:
        reached = passed >= _MAJORITY_FLOOR
    return ConsensusOutcome(reached=reached, passed=passed, failed=failed, errored=errored)


def has_consensus(statuses: Iterable[VerdictStatus]) -> bool:
    return evaluate_consensus(statuses).reached


__all__ = ["ConsensusOutcome", "evaluate_consensus", "has_consensus"]
