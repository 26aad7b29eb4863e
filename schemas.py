"""Pydantic schemas for API payloads, degraded responses and helper utilities."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

__all__ = [
    "AffectiveState",
    "HealthStatus",
    "ProfileDefaults",
    "ProvisionedIdentity",
    "UserPayload",
    "SignupBody",
    "SignupResponse",
    "ProfileResponse",
    "ProfileUpdateBody",
    "ProfileUpdateResponse",
    "CourseSummary",
    "CoursesResponse",
    "ProgressBody",
    "ProgressEntry",
    "ProgressResponse",
    "RecommendationBody",
    "RecommendationResponse",
    "PracticeFeedbackBody",
    "PracticeFeedback",
    "PracticeFeedbackResponse",
    "parse_json_safe",
]

AffectiveState = Literal["confused", "frustrated", "engaged", "neutral"]
Difficulty = Literal["beginner", "intermediate", "advanced"]


class HealthStatus(BaseModel):
    healthy: bool
    checked_at: datetime
    latency: float = Field(ge=0.0, description="Probe round-trip in seconds.")
    error: str | None = None


class ProfileDefaults(BaseModel):
    """Starting learner profile applied to new and temporary identities."""

    learning_style: Dict[str, float] = Field(
        default_factory=lambda: {"visual": 0.7, "auditory": 0.5, "kinesthetic": 0.6}
    )
    skill_level: Dict[str, Difficulty] = Field(
        default_factory=lambda: {
            "theory": "beginner",
            "tooling": "beginner",
            "prompting": "beginner",
        }
    )
    emotion_baseline: Dict[str, float] = Field(
        default_factory=lambda: {
            "confusion_threshold": 0.7,
            "frustration_threshold": 0.6,
            "engagement_baseline": 0.5,
        }
    )
    preferences: Dict[str, str] = Field(
        default_factory=lambda: {
            "preferred_format": "hybrid",
            "language": "es",
            "pace": "normal",
            "difficulty_preference": "adaptive",
        }
    )


class ProvisionedIdentity(BaseModel):
    """Non-durable identity synthesised when account creation cannot complete."""

    id: str
    email: str
    display_name: str
    first_name: str | None = None
    last_name: str | None = None
    profile_defaults: ProfileDefaults = Field(default_factory=ProfileDefaults)
    is_temporary: Literal[True] = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class UserPayload(BaseModel):
    """User record as serialised to clients; ``is_temporary`` is always present."""

    id: str
    email: str | None = None
    display_name: str
    first_name: str | None = None
    last_name: str | None = None
    is_temporary: bool

    @classmethod
    def from_identity(cls, identity: ProvisionedIdentity) -> "UserPayload":
        return cls(
            id=identity.id,
            email=identity.email,
            display_name=identity.display_name,
            first_name=identity.first_name,
            last_name=identity.last_name,
            is_temporary=identity.is_temporary,
        )

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "UserPayload":
        return cls(
            id=str(record["id"]),
            email=record.get("email"),
            display_name=record.get("display_name") or "ProfAI Learner",
            first_name=record.get("first_name"),
            last_name=record.get("last_name"),
            is_temporary=False,
        )


class _DegradableResponse(BaseModel):
    degraded: bool = False
    warning: str | None = None


class SignupBody(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=6, max_length=256)
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    learning_style: Dict[str, float] | None = None
    skill_level: Dict[str, Difficulty] | None = None


class SignupResponse(_DegradableResponse):
    success: bool = True
    message: str
    user: UserPayload


class ProfileResponse(_DegradableResponse):
    user: UserPayload
    profile: Dict[str, Any]


class ProfileUpdateBody(BaseModel):
    user_id: str = Field(min_length=1)
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(min_length=1, max_length=128)
    learning_style: Dict[str, float] | None = None
    skill_level: Dict[str, Difficulty] | None = None
    emotion_baseline: Dict[str, float] | None = None
    preferences: Dict[str, Any] | None = None


class ProfileUpdateResponse(_DegradableResponse):
    message: str
    user: UserPayload
    profile: Dict[str, Any]
    persisted: bool = True


class CourseSummary(BaseModel):
    id: str
    title: str
    description: str | None = None
    category: str | None = None
    difficulty: Difficulty | None = None
    total_lessons: int = 0
    completed_lessons: int = 0
    progress: int = Field(default=0, ge=0, le=100)


class CoursesResponse(_DegradableResponse):
    courses: List[CourseSummary]
    total: int


class ProgressBody(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    course_id: str = Field(min_length=1, max_length=128)
    lesson_id: str = Field(min_length=1, max_length=128)
    status: Literal["started", "completed"] = "completed"
    score: float | None = Field(default=None, ge=0.0, le=1.0)


class ProgressEntry(BaseModel):
    course_id: str
    lesson_id: str
    status: str
    score: float | None = None
    updated_at: str | None = None


class ProgressResponse(_DegradableResponse):
    user_id: str
    entries: List[ProgressEntry]
    persisted: bool = True


class RecommendationBody(BaseModel):
    text: str = Field(max_length=4000)
    current_topic: str | None = Field(default=None, max_length=200)
    affective_state: AffectiveState | None = None


class RecommendationResponse(BaseModel):
    item: Dict[str, Any] | None = None
    score: int = 0
    reasons: List[str] = Field(default_factory=list)


class PracticeFeedbackBody(BaseModel):
    user_id: str | None = None
    exercise: str = Field(min_length=1, max_length=4000)
    answer: str = Field(min_length=1, max_length=8000)
    affective_state: AffectiveState | None = None


class PracticeFeedback(BaseModel):
    feedback: str
    score: float | None = Field(default=None, ge=0.0, le=1.0)
    hints: List[str] = Field(default_factory=list)


class PracticeFeedbackResponse(_DegradableResponse):
    feedback: PracticeFeedback
    recommendation: Dict[str, Any] | None = None


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model``, falling back to the first embedded JSON object.

    Text after the extracted object is rejected so that a truncated or chatty
    completion is not silently accepted.
    """

    try:
        return model.model_validate_json(text)
    except (ValidationError, ValueError) as exc:
        first_error: Exception = exc

    try:
        snippet, _, end = _find_first_json_object(text)
    except ValueError:
        raise first_error

    if text[end:].strip():
        raise first_error
    return model.model_validate_json(snippet)
