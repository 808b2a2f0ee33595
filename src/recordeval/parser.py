"""ResponseParser — extracts JSON from evaluator output.

Evaluators often wrap JSON in a fenced code block, with or without a
language tag::

    ```json
    {"status": "matched", ...}
    ```

The parser trims whitespace, strips one leading and one trailing fence,
and parses the remainder strictly.  Anything that fails becomes a
``ParseError`` carrying the original text.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from recordeval.constants import LOG_PREVIEW_CHARS
from recordeval.errors import ParseError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Opening fence with an optional language tag, e.g. ``` or ```json
_OPEN_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n?")
_CLOSE_FENCE = re.compile(r"\n?[ \t]*```$")


def strip_code_fence(text: str) -> str:
    """Trim whitespace and remove a surrounding fenced code block if present."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _OPEN_FENCE.sub("", stripped, count=1)
        stripped = _CLOSE_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def preview(text: str) -> str:
    """Shorten raw evaluator output for log lines."""
    if len(text) <= LOG_PREVIEW_CHARS:
        return text
    return text[:LOG_PREVIEW_CHARS] + "..."


class ResponseParser:
    """Parses raw evaluator text into JSON values or validated models."""

    def parse(self, raw_text: str) -> Any:
        """Return the JSON value in ``raw_text``.

        Raises:
            ParseError: if the text (after fence stripping) is not valid JSON
        """
        if not isinstance(raw_text, str):
            raise ParseError(
                f"Expected text, got {type(raw_text).__name__}", raw_text=str(raw_text),
            )
        candidate = strip_code_fence(raw_text)
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid JSON response: {exc}", raw_text=raw_text) from exc

    def try_parse(self, raw_text: str) -> Any | ParseError:
        """Like :meth:`parse` but returns the ``ParseError`` instead of raising."""
        try:
            return self.parse(raw_text)
        except ParseError as exc:
            logger.warning("Failed to parse evaluator response: %s", preview(exc.raw_text))
            return exc

    def parse_model(self, raw_text: str, model: type[ModelT]) -> ModelT:
        """Parse ``raw_text`` and validate it against ``model``.

        Schema violations are reported as ``ParseError`` too, so callers
        handle a single failure type for "the evaluator said something
        unusable".
        """
        value = self.parse(raw_text)
        try:
            return model.model_validate(value)
        except SchemaError as exc:
            raise ParseError(
                f"Response does not match {model.__name__}: {exc.error_count()} errors",
                raw_text=raw_text,
            ) from exc
