"""Dependency graph construction."""

from .builder import GraphBuilder, component_id_for
from .grouping import COMPONENT_KINDS, POLICIES, kind_for

__all__ = ["COMPONENT_KINDS", "GraphBuilder", "POLICIES", "component_id_for", "kind_for"]
