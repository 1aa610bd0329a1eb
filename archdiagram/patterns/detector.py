"""Runs pattern rules over a completed graph."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Tuple

from ..config import PatternConfig
from ..errors import PatternRuleFailure
from ..logging import get_logger
from ..models import ArchitectureGraph, Diagnostic, PatternMatch
from .rules import PatternRule, select_rules

_logger = get_logger("patterns")


class PatternDetector:
    """Evaluates independent rules in parallel and isolates rule failures."""

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        rules: Optional[Mapping[str, PatternRule]] = None,
        *,
        workers: int = 4,
    ) -> None:
        self.config = config or PatternConfig()
        self.rules: Dict[str, PatternRule] = dict(rules) if rules is not None else select_rules(self.config.enabled)
        self.workers = max(1, workers)

    def detect(self, graph: ArchitectureGraph) -> Tuple[List[PatternMatch], List[Diagnostic]]:
        if not self.rules or not graph.components:
            return [], []
        matches: List[PatternMatch] = []
        diagnostics: List[Diagnostic] = []
        with ThreadPoolExecutor(max_workers=min(self.workers, len(self.rules))) as pool:
            futures = {name: pool.submit(rule, graph, self.config) for name, rule in self.rules.items()}
            for name, future in futures.items():
                try:
                    found = future.result()
                except Exception as exc:
                    failure = PatternRuleFailure(name, f"{type(exc).__name__}: {exc}")
                    _logger.warning("%s", failure)
                    diagnostics.append(failure.to_diagnostic())
                    continue
                matches.extend(sorted(found, key=lambda match: match.component_ids))
        _logger.debug("Detected %d pattern match(es)", len(matches))
        return matches, diagnostics


__all__ = ["PatternDetector"]
