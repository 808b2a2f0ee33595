"""CatalogStore — loads session-class policies and the checklist from YAML.

This is the single source of truth for configuration data at runtime.  The
store is loaded once at startup and provides lookup by session class and
checklist category.

Usage::

    catalog = CatalogStore()        # defaults to the packaged data/ dir
    catalog.load()                  # parse all YAML files

    policy = catalog.get_policy("records-chat")
    categories = catalog.get_categories(["Metabolic Health"])
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from recordeval.models.catalog import (
    ChecklistCategory,
    PriorityLexicon,
    SessionClassPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent / "data"


def load_yaml(path: Path | str) -> Any:
    """Load a single YAML file and return the parsed contents."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing YAML file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


class CatalogStore:
    """Loads all YAML from the data directory and provides typed lookup.

    Attributes populated after :meth:`load`:

        policies          — dict[name, SessionClassPolicy]
        categories        — list[ChecklistCategory] in assessment order
        priority_lexicon  — PriorityLexicon
    """

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self._base = Path(data_dir) if data_dir is not None else DEFAULT_DATA_DIR

        # Populated by load()
        self.policies: dict[str, SessionClassPolicy] = {}
        self.categories: list[ChecklistCategory] = []
        self.priority_lexicon = PriorityLexicon()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Parse all YAML files under the data directory into typed models.

        Call this once at startup.  Raises ``FileNotFoundError`` if expected
        YAML files are missing.
        """
        self._load_policies()
        self._load_checklist()
        logger.info(
            "CatalogStore loaded: %d session classes, %d checklist categories, %d tests",
            len(self.policies),
            len(self.categories),
            sum(len(c.items) for c in self.categories),
        )

    def _load_policies(self) -> None:
        raw = load_yaml(self._base / "session_classes.yaml")
        for entry in raw["session_classes"]:
            policy = SessionClassPolicy(**entry)
            self.policies[policy.name] = policy

    def _load_checklist(self) -> None:
        raw = load_yaml(self._base / "checklist.yaml")
        self.categories = [ChecklistCategory(**c) for c in raw["categories"]]
        self.priority_lexicon = PriorityLexicon(**(raw.get("priority_keywords") or {}))

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_policy(self, session_class: str) -> SessionClassPolicy:
        """Return the policy for a session class.

        Raises:
            KeyError: if the session class is not configured.
        """
        return self.policies[session_class]

    def get_categories(self, names: list[str] | None = None) -> list[ChecklistCategory]:
        """Return checklist categories in catalog order.

        Args:
            names: optional subset to restrict to.  Unknown names raise
                ``KeyError`` so a typo never silently shrinks an assessment.
        """
        if not names:
            return list(self.categories)
        known = {c.name for c in self.categories}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise KeyError(f"Unknown checklist categories: {unknown}")
        wanted = set(names)
        return [c for c in self.categories if c.name in wanted]
