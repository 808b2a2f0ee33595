"""Pydantic models for catalog and policy data.

These models mirror the YAML files in ``recordeval/data/``:

  - SessionClassPolicy: TTL, record ceiling, and evaluator requirement per
    session class (session_classes.yaml)
  - ChecklistTest / ChecklistCategory: the longevity checklist
    (checklist.yaml)
  - PriorityLexicon: keyword lists used to rank missing tests
    (checklist.yaml, ``priority_keywords``)
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, PositiveInt


# ---------------------------------------------------------------------------
# Session classes — data/session_classes.yaml
# ---------------------------------------------------------------------------

class SessionClassPolicy(BaseModel):
    """Externally configured limits for one request type.

    ``ttl_seconds`` sets how long a session lives; ``max_record_size`` is
    the hard ceiling on submitted record characters, enforced at creation.
    """

    name: str
    description: str = ""
    ttl_seconds: PositiveInt
    max_record_size: PositiveInt
    require_compliant_evaluator: bool = False
    # False lets a session start without a record (coaching classes)
    record_required: bool = True
    # Prefix for generated session ids, e.g. "outlive-session"
    id_prefix: str = "session"
    # Chat template id ("records_chat" / "cbt_coach"); None disables chat
    persona: Optional[str] = None
    default_context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)


# ---------------------------------------------------------------------------
# Checklist — data/checklist.yaml
# ---------------------------------------------------------------------------

class ChecklistTest(BaseModel):
    """One test on the checklist and why it matters."""

    test: str
    rationale: str = ""


class ChecklistCategory(BaseModel):
    """Ordered group of checklist tests assessed in a single evaluator call."""

    name: str
    items: List[ChecklistTest]


class PriorityLexicon(BaseModel):
    """Keyword lists for ranking missing tests.

    A test whose name contains any ``high`` keyword is high priority,
    otherwise any ``medium`` keyword makes it medium, otherwise low.
    """

    high: List[str] = Field(default_factory=list)
    medium: List[str] = Field(default_factory=list)
