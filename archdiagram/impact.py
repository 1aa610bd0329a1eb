"""Change impact propagation over a prior architecture graph."""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Set

from .config import ImpactConfig
from .errors import ImpactComputationTimeout
from .graph.builder import component_id_for
from .graph.grouping import assign
from .logging import get_logger
from .models import ArchitectureGraph, ChangeKind, ChangeSet, ImpactResult, SourceUnit

_logger = get_logger("impact")


class ChangeImpactAnalyzer:
    """Scores components by graph distance from the files a change touched.

    Directly touched components score 1.0; every hop over an incoming or
    outgoing edge multiplies by ``decay`` up to ``hop_limit`` hops. The best
    (shortest-path) score wins and scores under ``min_impact`` are dropped.
    """

    def __init__(
        self,
        config: Optional[ImpactConfig] = None,
        *,
        policy: str = "file",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ImpactConfig()
        self.policy = policy
        self._clock = clock

    def impact(
        self,
        change_set: ChangeSet,
        prior_graph: ArchitectureGraph,
        new_units: Iterable[SourceUnit] = (),
        *,
        hop_limit: Optional[int] = None,
    ) -> ImpactResult:
        """Score components reachable from the change; ``hop_limit`` overrides the configured limit."""
        limit = self.config.hop_limit if hop_limit is None else hop_limit
        deadline = self._clock() + self.config.time_budget
        touched = self._directly_touched(change_set, prior_graph, new_units)

        neighbours: Dict[str, Set[str]] = defaultdict(set)
        for edge in prior_graph.edges:
            neighbours[edge.source].add(edge.target)
            neighbours[edge.target].add(edge.source)

        hops: Dict[str, int] = {component_id: 0 for component_id in touched}
        frontier = sorted(touched)
        for hop in range(1, limit + 1):
            if not frontier:
                break
            discovered: List[str] = []
            for component_id in frontier:
                if self._clock() > deadline:
                    raise ImpactComputationTimeout(
                        f"Impact propagation exceeded {self.config.time_budget:.1f}s at hop {hop}",
                        hops=hop,
                    )
                for neighbour in sorted(neighbours.get(component_id, ())):
                    if neighbour not in hops:
                        hops[neighbour] = hop
                        discovered.append(neighbour)
            frontier = discovered

        scores = {
            component_id: self.config.decay**hop
            for component_id, hop in hops.items()
            if self.config.decay**hop >= self.config.min_impact or hop == 0
        }
        population = set(prior_graph.component_ids()) | touched
        result = ImpactResult(
            scores=dict(sorted(scores.items())),
            directly_touched=sorted(touched),
            hops={component_id: hops[component_id] for component_id in sorted(scores)},
            total_score=round(sum(scores.values()), 6),
            affected_fraction=len(scores) / len(population) if population else 0.0,
        )
        _logger.debug(
            "Impact of %d change(s): %d touched, %d affected (%.0f%%)",
            len(change_set.changes),
            len(touched),
            len(scores),
            result.affected_fraction * 100,
        )
        return result

    def should_regenerate(self, result: ImpactResult) -> bool:
        return result.affected_fraction > self.config.full_regeneration_fraction

    def _directly_touched(
        self,
        change_set: ChangeSet,
        prior_graph: ArchitectureGraph,
        new_units: Iterable[SourceUnit],
    ) -> Set[str]:
        file_map = prior_graph.file_components()
        units = {unit.path: unit for unit in new_units}
        touched: Set[str] = set()
        for change in change_set.changes:
            touched.update(file_map.get(change.path, ()))
            if change.old_path:
                touched.update(file_map.get(change.old_path, ()))
            if change.kind is ChangeKind.DELETED:
                continue
            unit = units.get(change.path)
            if unit is not None:
                for group in assign(unit, self.policy).values():
                    touched.add(component_id_for(self.policy, group.qualified_name))
        return touched


__all__ = ["ChangeImpactAnalyzer"]
