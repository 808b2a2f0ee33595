"""Session models — the state a caller submits and the pipeline mutates.

A ``Session`` holds one request's submitted record, its structured payload
(trial criteria, checklist selection, or conversational context), an
append-only transcript, and the last computed result.

The record, payload, and timestamps are frozen once the session is built;
only ``transcript`` and ``result`` may change, and only through
``SessionStore.update()``.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Message(BaseModel):
    """One role-tagged transcript entry."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class TrialCriteria(BaseModel):
    """Inclusion and exclusion criteria for a clinical trial."""

    model_config = ConfigDict(frozen=True)

    inclusion_criteria: list[str] = Field(default_factory=list)
    exclusion_criteria: list[str] = Field(default_factory=list)


class SessionPayload(BaseModel):
    """Structured input attached to a session at creation time.

    Which fields are populated depends on the session class:
      - trial matching: ``criteria`` and optionally ``trial_info``
      - checklist: optional ``categories`` to restrict the assessment
      - chat / coaching: ``context`` only
    """

    model_config = ConfigDict(frozen=True)

    context: dict[str, Any] = Field(default_factory=dict)
    criteria: TrialCriteria | None = None
    trial_info: dict[str, Any] | None = None
    categories: list[str] | None = None


class Session(BaseModel):
    """Bounded-lifetime container for one request's material and state."""

    session_id: str = Field(frozen=True)
    session_class: str = Field(frozen=True)
    record: str = Field(frozen=True)
    payload: SessionPayload = Field(default_factory=SessionPayload, frozen=True)
    created_at: datetime = Field(frozen=True)
    expires_at: datetime = Field(frozen=True)
    transcript: list[Message] = Field(default_factory=list)
    # Serialised form of the most recent EligibilityResult / ChecklistResult
    result: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _check_lifetime(self) -> "Session":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        """A session is dead once ``now`` passes ``expires_at``."""
        return now > self.expires_at


class SessionCreated(BaseModel):
    """Envelope returned when a session is created."""

    session_id: str
    session_class: str
    created_at: datetime
    expires_at: datetime


class SessionInfo(BaseModel):
    """Public view of a session for API consumers."""

    session_id: str
    session_class: str
    record: str
    context: dict[str, Any]
    criteria: TrialCriteria | None = None
    trial_info: dict[str, Any] | None = None
    transcript: list[Message]
    result: dict[str, Any] | None = None
    created_at: datetime
    expires_at: datetime
    # Milliseconds until expiry, never negative
    time_remaining: int


class ChatReply(BaseModel):
    """Assistant turn returned from a chat exchange."""

    session_id: str
    session_class: str
    response: str
    message_count: int
    timestamp: datetime
