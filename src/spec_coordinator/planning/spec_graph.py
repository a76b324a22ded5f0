"""Deterministic dependency ordering for feature specs."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from heapq import heapify, heappop, heappush

from spec_coordinator.domain.models import SpecEntry
from spec_coordinator.errors import DependencyCycleError, DuplicateSpecError, UnknownDependencyError


def order_specs(specs: Sequence[SpecEntry]) -> list[SpecEntry]:
    """Return context-only specs (by filename) followed by a topological build order.

    Ready specs are popped by ``(file_name, id)`` so ties are broken
    lexicographically by filename. Raises ``UnknownDependencyError``,
    ``DuplicateSpecError`` or ``DependencyCycleError``; never returns a
    partial order.
    """
    context = sorted((spec for spec in specs if spec.context_only), key=lambda s: s.file_name)
    buildable = [spec for spec in specs if not spec.context_only]
    context_ids = {spec.id for spec in context}

    by_id: dict[str, SpecEntry] = {}
    for spec in buildable:
        existing = by_id.get(spec.id)
        if existing is not None:
            raise DuplicateSpecError(spec.id, sorted((existing.file_name, spec.file_name)))
        by_id[spec.id] = spec

    parents: dict[str, set[str]] = {spec_id: set() for spec_id in by_id}
    children: dict[str, set[str]] = {spec_id: set() for spec_id in by_id}
    for spec in sorted(buildable, key=lambda s: s.file_name):
        for dependency in spec.depends_on:
            if dependency in by_id:
                parents[spec.id].add(dependency)
                children[dependency].add(spec.id)
            elif dependency not in context_ids:
                raise UnknownDependencyError(spec.id, dependency)

    indegree = {spec_id: len(deps) for spec_id, deps in parents.items()}
    ready: list[tuple[str, str]] = [
        (by_id[spec_id].file_name, spec_id) for spec_id, degree in indegree.items() if degree == 0
    ]
    heapify(ready)

    ordered: list[SpecEntry] = []
    while ready:
        _, spec_id = heappop(ready)
        ordered.append(by_id[spec_id])
        for child in sorted(children[spec_id]):
            indegree[child] -= 1
            if indegree[child] == 0:
                heappush(ready, (by_id[child].file_name, child))

    if len(ordered) != len(buildable):
        raise DependencyCycleError(detect_cycles(children))

    return [*context, *ordered]


def detect_cycles(children: Mapping[str, set[str]]) -> tuple[tuple[str, ...], ...]:
    """
    Detect directed cycles in a ``dependency -> dependents`` adjacency map.

    Returns closed paths, e.g. ``("a", "b", "a")``, each rotated so its
    smallest id comes first.
    """
    state: dict[str, int] = {}
    stack: list[str] = []
    stack_index: dict[str, int] = {}
    cycles: dict[tuple[str, ...], None] = {}

    for start in sorted(children):
        if state.get(start, 0) != 0:
            continue

        state[start] = 1
        stack.append(start)
        stack_index[start] = 0
        frames: list[tuple[str, Iterator[str]]] = [(start, iter(sorted(children[start])))]

        while frames:
            node, child_iter = frames[-1]
            try:
                child = next(child_iter)
            except StopIteration:
                frames.pop()
                state[node] = 2
                stack.pop()
                del stack_index[node]
                continue

            child_state = state.get(child, 0)
            if child_state == 0:
                state[child] = 1
                stack_index[child] = len(stack)
                stack.append(child)
                frames.append((child, iter(sorted(children.get(child, ())))))
            elif child_state == 1:
                cycle = tuple(stack[stack_index[child] :] + [child])
                cycles[_canonicalize_cycle(cycle)] = None

    return tuple(sorted(cycles))


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])
    best = min(core[offset:] + core[:offset] for offset in range(len(core)))
    return best + (best[0],)


__all__ = ["detect_cycles", "order_specs"]
