"""Dependency resolver: turns loaded descriptors into an initialization order.

Ordering is deterministic: among plugins whose dependencies are all
placed, the one discovered first goes next. A plugin whose dependency is
missing, cyclic, or itself excluded is reported and left out; everything
else still resolves.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence
from dataclasses import dataclass, field

from quire.errors import (
    DependencyCycle,
    DependencyFailed,
    LoadError,
    UnresolvedDependency,
)
from quire.logger import logger
from quire.plugin.loader import PluginDescriptor


@dataclass
class Resolution:
    order: list[str] = field(default_factory=list)
    errors: list[LoadError] = field(default_factory=list)


def resolve(descriptors: Sequence[PluginDescriptor]) -> Resolution:
    """Topologically order *descriptors*, given in discovery order."""
    index = {d.name: i for i, d in enumerate(descriptors)}
    by_name = {d.name: d for d in descriptors}
    result = Resolution()
    excluded: dict[str, LoadError] = {}

    for d in descriptors:
        for dep in d.dependencies:
            if dep not in by_name:
                excluded[d.name] = UnresolvedDependency(d.name, dep)
                break

    # Kahn's algorithm over the plugins that can still load
    pending = {d.name: set(d.dependencies) for d in descriptors if d.name not in excluded}
    _propagate(pending, excluded, by_name)

    dependents: dict[str, list[str]] = {name: [] for name in pending}
    for name, deps in pending.items():
        for dep in deps:
            dependents[dep].append(name)
    remaining = {name: len(deps) for name, deps in pending.items()}
    ready = [index[name] for name, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    while ready:
        name = descriptors[heapq.heappop(ready)].name
        result.order.append(name)
        del remaining[name]
        for child in dependents[name]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, index[child])

    # Whatever is left sits on a cycle or downstream of one
    stuck = {name: pending[name] for name in remaining}
    on_cycle: dict[str, list[str]] = {}
    for name in sorted(stuck, key=index.__getitem__):
        if name in on_cycle:
            continue
        cycle = _find_cycle(name, stuck)
        if cycle is not None:
            for member in cycle[:-1]:
                on_cycle.setdefault(member, _rotate(cycle, member))
    for name in sorted(stuck, key=index.__getitem__):
        if name in on_cycle:
            excluded[name] = DependencyCycle(name, on_cycle[name])
        else:
            dep = min(stuck[name], key=index.__getitem__)
            excluded[name] = DependencyFailed(name, dep)

    for d in descriptors:
        if d.name in excluded:
            err = excluded[d.name]
            logger.error("Plugin excluded by resolver", plugin=d.name, err=str(err))
            result.errors.append(err)

    logger.info("Dependency order resolved", order=result.order)
    return result


def _propagate(
    pending: dict[str, set[str]],
    excluded: dict[str, LoadError],
    by_name: dict[str, PluginDescriptor],
) -> None:
    """Exclude every plugin that depends, transitively, on an excluded one.

    The first excluded dependency in declaration order is the one reported.
    """
    changed = True
    while changed:
        changed = False
        for name in list(pending):
            broken = next(
                (dep for dep in by_name[name].dependencies if dep in excluded), None
            )
            if broken is not None:
                excluded[name] = DependencyFailed(name, broken)
                del pending[name]
                changed = True


def _find_cycle(start: str, graph: dict[str, set[str]]) -> list[str] | None:
    """Return a cycle through *start* as ``[start, ..., start]``, or None."""
    stack: list[tuple[str, list[str]]] = [(start, [start])]
    seen: set[str] = set()
    while stack:
        node, path = stack.pop()
        for dep in sorted(graph.get(node, ())):
            if dep == start:
                return [*path, start]
            if dep in graph and dep not in seen:
                seen.add(dep)
                stack.append((dep, [*path, dep]))
    return None


def _rotate(cycle: list[str], member: str) -> list[str]:
    ring = cycle[:-1]
    i = ring.index(member)
    ring = ring[i:] + ring[:i]
    return [*ring, member]
