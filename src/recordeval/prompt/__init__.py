"""Prompt rendering for the evaluator.

Provides ``PromptManager``, a Jinja2-based template engine that renders a
record plus its evaluation items (or a chat transcript) into a single
prompt string with JSON response format instructions.
"""

from recordeval.prompt.manager import PromptManager

__all__ = ["PromptManager"]
