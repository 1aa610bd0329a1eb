"""Aggregate parsed units into an ArchitectureGraph."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..errors import GraphBuildFailure
from ..logging import get_logger
from ..models import (
    ArchitectureGraph,
    Component,
    ComponentMetrics,
    DependencyEdge,
    ExternalDependency,
    SourceUnit,
    Symbol,
)
from .cycles import cycle_members, to_digraph
from .grouping import Group, assign

_logger = get_logger("graph")


@dataclass
class _Draft:
    group: Group
    members: Set[str] = field(default_factory=set)
    files: Set[str] = field(default_factory=set)


class _SymbolIndex:
    """Resolves free-text reference targets to component ids."""

    def __init__(self) -> None:
        self._by_name: Dict[str, Dict[str, Set[str]]] = {}
        self._by_alias: Dict[str, Set[str]] = {}

    def add(self, symbol: Symbol, component_id: str) -> None:
        self._by_name.setdefault(symbol.qualified_name, {}).setdefault(symbol.kind, set()).add(component_id)
        for alias in symbol.aliases:
            self._by_alias.setdefault(alias, set()).add(component_id)

    def resolve(self, target: str) -> Optional[str]:
        name = target
        while name:
            component = self._exact(name) or self._alias(name)
            if component is not None:
                return component
            if "." not in name:
                return None
            name = name.rsplit(".", 1)[0]
        return None

    def _exact(self, name: str) -> Optional[str]:
        kinds = self._by_name.get(name)
        if not kinds:
            return None
        declared = {kind: ids for kind, ids in kinds.items() if kind != "module"} or kinds
        candidates = set().union(*declared.values())
        return next(iter(candidates)) if len(candidates) == 1 else None

    def _alias(self, name: str) -> Optional[str]:
        candidates = self._by_alias.get(name, set())
        return next(iter(candidates)) if len(candidates) == 1 else None


class GraphBuilder:
    """Builds component graphs; output order depends only on the unit set and policy."""

    def __init__(self, policy: str = "file") -> None:
        self.policy = policy

    def build(
        self,
        units: Iterable[SourceUnit],
        policy: Optional[str] = None,
        *,
        project_id: str = "",
        commit: str = "",
    ) -> ArchitectureGraph:
        policy = policy or self.policy
        ordered = _dedupe_units(units)

        drafts: Dict[str, _Draft] = {}
        owner: Dict[str, str] = {}
        index = _SymbolIndex()
        for unit in ordered:
            groups = assign(unit, policy)
            for symbol in unit.symbols:
                group = groups.get(symbol.id)
                if group is None:
                    continue
                component_id = component_id_for(policy, group.qualified_name)
                draft = drafts.setdefault(component_id, _Draft(group))
                draft.members.add(symbol.id)
                draft.files.add(unit.path)
                owner.setdefault(symbol.id, component_id)
                index.add(symbol, owner[symbol.id])

        edge_weights: Counter[Tuple[str, str, str]] = Counter()
        external_weights: Counter[Tuple[str, str, str]] = Counter()
        for unit in ordered:
            for reference in unit.references:
                source = owner.get(reference.source)
                if source is None:
                    continue
                target = index.resolve(reference.target)
                if target is None:
                    external_weights[(source, reference.target, reference.kind)] += 1
                elif target != source:
                    edge_weights[(source, target, reference.kind)] += 1

        sort_key = {
            component_id: (draft.group.qualified_name, draft.group.kind, component_id)
            for component_id, draft in drafts.items()
        }
        component_order = sorted(drafts, key=lambda component_id: sort_key[component_id])
        edges = [
            DependencyEdge(source=source, target=target, kind=kind, weight=weight)
            for (source, target, kind), weight in sorted(
                edge_weights.items(),
                key=lambda item: (sort_key[item[0][0]], sort_key[item[0][1]], item[0][2]),
            )
        ]
        external = [
            ExternalDependency(source=source, target=target, kind=kind, weight=weight)
            for (source, target, kind), weight in sorted(
                external_weights.items(), key=lambda item: (sort_key[item[0][0]], item[0][1], item[0][2])
            )
        ]

        in_cycle = cycle_members(to_digraph(component_order, edges))
        fan_in: Counter[str] = Counter(edge.target for edge in edges)
        fan_out: Counter[str] = Counter(edge.source for edge in edges)
        components = [
            Component(
                id=component_id,
                name=drafts[component_id].group.name,
                kind=drafts[component_id].group.kind,
                qualified_name=drafts[component_id].group.qualified_name,
                members=sorted(drafts[component_id].members),
                files=sorted(drafts[component_id].files),
                metrics=ComponentMetrics(
                    fan_in=fan_in[component_id],
                    fan_out=fan_out[component_id],
                    size=len(drafts[component_id].members),
                    in_cycle=component_id in in_cycle,
                ),
            )
            for component_id in component_order
        ]

        graph = ArchitectureGraph(
            project_id=project_id,
            commit=commit,
            components=components,
            edges=edges,
            external=external,
            files={unit.path: unit.content_hash for unit in ordered},
        )
        try:
            graph.validate()
        except GraphBuildFailure:
            _logger.error("Graph for %s@%s violates invariants", project_id, commit)
            raise
        _logger.debug(
            "Built graph with %d components, %d edges, %d external references",
            len(components),
            len(edges),
            len(external),
        )
        return graph


def component_id_for(policy: str, qualified_name: str) -> str:
    return f"{policy}:{qualified_name}"


def _dedupe_units(units: Iterable[SourceUnit]) -> List[SourceUnit]:
    """Order units by (path, hash); a path seen twice keeps its first unit in that order."""
    ordered: List[SourceUnit] = []
    seen: Set[str] = set()
    for unit in sorted(units, key=lambda item: (item.path, item.content_hash, item.language)):
        if unit.path in seen:
            continue
        seen.add(unit.path)
        ordered.append(unit)
    return ordered


__all__ = ["GraphBuilder", "component_id_for"]
