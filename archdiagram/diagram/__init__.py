"""Diagram model construction and incremental reconciliation."""

from .builder import DiagramModelBuilder, cluster_membership
from .layout import layout
from .reconciler import DiagramReconciler

__all__ = ["DiagramModelBuilder", "DiagramReconciler", "cluster_membership", "layout"]
