"""Abstract interfaces for the pipeline's external collaborators.

These ABCs define the contracts that implementations must fulfil:

  - ``Evaluator``: the natural-language model.  Submit prompt text, get
    response text back.  No streaming.
  - ``PriorityPolicy``: ranks a missing checklist test.

Typical integration flow::

    evaluator: Evaluator = HttpEvaluator(base_url=..., model="hipaa:o3-high")
    pipeline = EvaluationPipeline(store, catalog, evaluator)

    created = await pipeline.create_session(
        "trial-matcher", record="...", criteria=TrialCriteria(...),
    )
    result = await pipeline.run_eligibility(created.session_id)
    # result.overall_eligibility in {"eligible", "ineligible", "needs-review"}
"""

from abc import ABC, abstractmethod

from recordeval.models.evaluation import Priority


class Evaluator(ABC):
    """Interface for the external natural-language evaluator.

    Implementations raise ``EvaluatorUnavailable`` or ``EvaluatorTimeout``
    on transport failure.  They never parse the reply; that is the
    caller's job.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the underlying model, e.g. ``hipaa:o3-high``."""
        ...

    @abstractmethod
    async def reply(self, prompt: str) -> str:
        """Submit ``prompt`` and return the evaluator's full response text.

        Raises
        ------
        EvaluatorUnavailable
            The evaluator could not be reached or returned no content.
        EvaluatorTimeout
            The evaluator did not respond in time.
        """
        ...


class PriorityPolicy(ABC):
    """Interface for ranking a missing checklist test.

    The shipped implementation is a keyword heuristic; it has not been
    validated against a clinical risk model.
    """

    @abstractmethod
    def priority_for(self, test_name: str, category: str) -> Priority:
        """Return ``high``, ``medium``, or ``low`` for a missing test."""
        ...
