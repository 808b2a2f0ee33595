"""Public model re-exports for recordeval.

Consumers should import from ``recordeval.models`` rather than reaching
into sub-modules directly.
"""

# --- Catalog ---
from recordeval.models.catalog import (
    ChecklistCategory,
    ChecklistTest,
    PriorityLexicon,
    SessionClassPolicy,
)

# --- Evaluation results ---
from recordeval.models.evaluation import (
    CategoryResult,
    ChecklistItemResult,
    ChecklistOverall,
    ChecklistResult,
    ClinicalRecommendations,
    CriterionResult,
    EligibilityResult,
    EvaluationItem,
    MatchResult,
    MissingTest,
    OverallAssessment,
    Recommendation,
)

# --- Sessions ---
from recordeval.models.session import (
    ChatReply,
    Message,
    Session,
    SessionCreated,
    SessionInfo,
    SessionPayload,
    TrialCriteria,
)

__all__ = [
    # Catalog
    "ChecklistCategory",
    "ChecklistTest",
    "PriorityLexicon",
    "SessionClassPolicy",
    # Evaluation
    "CategoryResult",
    "ChecklistItemResult",
    "ChecklistOverall",
    "ChecklistResult",
    "ClinicalRecommendations",
    "CriterionResult",
    "EligibilityResult",
    "EvaluationItem",
    "MatchResult",
    "MissingTest",
    "OverallAssessment",
    "Recommendation",
    # Sessions
    "ChatReply",
    "Message",
    "Session",
    "SessionCreated",
    "SessionInfo",
    "SessionPayload",
    "TrialCriteria",
]
