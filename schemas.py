"""Pydantic schemas validating data that enters the tutoring engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Iterable, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

__all__ = [
    "ActivityError",
    "ActivityEvent",
    "ConceptContent",
    "ContentDescriptor",
    "LearningStyle",
    "PlanningConstraints",
    "PredictionResponse",
    "SchedulePreferences",
    "TopicContent",
    "parse_content",
]

LearningStyle = Literal["visual", "auditory", "kinesthetic", "reading"]


def _strip_ids(values: Iterable[Any]) -> List[str]:
    cleaned: List[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


class ActivityError(BaseModel):
    """A mistake observed during an activity."""

    type: str = Field(default="unknown", min_length=1)
    description: str = ""


class ActivityEvent(BaseModel):
    """A single practice activity reported for a learner."""

    score: float = Field(ge=0.0, le=1.0, description="Performance on the activity, 0..1.")
    difficulty: float = Field(default=3.0, ge=1.0, le=5.0)
    skills: List[str] = Field(default_factory=list, description="Catalog skill ids exercised.")
    topic: str | None = None
    activity: str = Field(
        default="practice",
        description="Free-form activity type, e.g. 'diagram_quiz' or 'interactive_game'.",
    )
    time_spent: float | None = Field(
        default=None,
        ge=0.0,
        description="Seconds spent on the activity; omitted when not measured.",
    )
    hints_used: int | None = Field(
        default=None,
        ge=0,
        description="Number of hints requested; omitted when hints were not offered.",
    )
    concepts_tested: List[str] = Field(default_factory=list, description="Concept ids the activity assessed.")
    errors: List[ActivityError] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("skills", "concepts_tested", mode="before")
    @classmethod
    def _normalise_ids(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _strip_ids([value])
        if isinstance(value, (list, tuple, set)):
            return _strip_ids(value)
        return value


class TopicContent(BaseModel):
    """Content that refers to a curriculum topic by id."""

    kind: Literal["topic"] = "topic"
    topic_id: str = Field(min_length=1)
    domain: str | None = Field(
        default=None,
        description="Overrides the domain inferred from the topic's skills.",
    )
    definition: str = ""
    related: List[str] = Field(default_factory=list)


class ConceptContent(BaseModel):
    """Freeform concept that is not part of the curriculum."""

    kind: Literal["concept"] = "concept"
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    definition: str = ""
    difficulty: int = Field(default=3, ge=1, le=5)
    domain: str = "general"
    prerequisites: List[str] = Field(default_factory=list)
    related: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    duration_minutes: float = Field(default=30.0, gt=0)

    @field_validator("prerequisites", "related", "skills", mode="before")
    @classmethod
    def _normalise_ids(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return _strip_ids(value)
        return value


ContentDescriptor = Annotated[Union[TopicContent, ConceptContent], Field(discriminator="kind")]

_CONTENT_ADAPTER = TypeAdapter(List[ContentDescriptor])


def parse_content(items: Iterable[Any]) -> List[TopicContent | ConceptContent]:
    """Validate raw mappings (or models) into tagged content descriptors.

    Raises ``pydantic.ValidationError`` for untagged or malformed entries.
    """

    payload = [item.model_dump() if isinstance(item, BaseModel) else item for item in items]
    return _CONTENT_ADAPTER.validate_python(payload)


class PlanningConstraints(BaseModel):
    """Budget and preferences for a single planning request."""

    time_available: float = Field(default=60.0, gt=0, description="Minutes available per session.")
    sessions_per_week: int = Field(default=5, ge=1, le=14)
    learning_style: LearningStyle | None = None
    goal_topic: str | None = None

    @property
    def weekly_budget(self) -> float:
        return self.time_available * self.sessions_per_week


class SchedulePreferences(BaseModel):
    preferred_hour: int | None = Field(default=None, ge=0, le=23)
    preferred_minute: int = Field(default=0, ge=0, le=59)


class PredictionResponse(BaseModel):
    """Body returned by the auxiliary performance predictor."""

    prediction: float = Field(ge=0.0, le=1.0)

    model_config = {
        "extra": "allow",
    }
