"""Architectural pattern detection."""

from .detector import PatternDetector
from .rules import BUILTIN_RULES, CLUSTER_PATTERNS, PatternRule

__all__ = ["BUILTIN_RULES", "CLUSTER_PATTERNS", "PatternDetector", "PatternRule"]
