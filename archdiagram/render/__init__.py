"""Diagram renderers."""

from .ai import AIRenderer, CircuitBreaker, Rendering
from .mermaid import MermaidRenderer, validate_markup
from .prompting import DiagramPromptBuilder

__all__ = [
    "AIRenderer",
    "CircuitBreaker",
    "DiagramPromptBuilder",
    "MermaidRenderer",
    "Rendering",
    "validate_markup",
]
