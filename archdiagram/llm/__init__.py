"""Local LLM runner used for AI-assisted rendering."""

from .runner import LLMError, LLMRequest, LLMRunner

__all__ = ["LLMError", "LLMRequest", "LLMRunner"]
