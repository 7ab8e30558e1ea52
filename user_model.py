"""Learner state: per-skill mastery, activity log, profile and derived aggregates."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from skill_catalog import DEFAULT_CATALOG, SkillCatalog

PRACTICE_HISTORY_LIMIT = 20
ACTIVITY_LOG_LIMIT = 1000
ACTIVITY_LOG_KEEP = 500
DEFAULT_MASTERY = 0.5
DEFAULT_TARGET = 0.8
DEFAULT_CONFIDENCE = 0.5
MIN_CONFIDENCE = 0.1
STRENGTH_THRESHOLD = 0.8
WEAKNESS_THRESHOLD = 0.6
SKILL_GAP_THRESHOLD = 0.2
CONCEPT_CORRECT_THRESHOLD = 0.7
CONCEPT_WEAKNESS_THRESHOLD = 0.6
CONCEPT_RECENCY_DAYS = 7
RECENT_ERRORS_LIMIT = 10
ERROR_TRENDS_LIMIT = 50
PATTERN_WINDOW = 30
DIFFICULTY_WINDOW = 20
MIN_PATTERN_ACTIVITIES = 5

LEARNING_STYLES = ("visual", "auditory", "kinesthetic", "reading")


def clamp(value: Any, low: float = 0.0, high: float = 1.0, *, default: Optional[float] = None) -> float:
    """Saturate ``value`` into ``[low, high]``; non-finite input maps to ``default``."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        if default is not None:
            return default
        return low if number == -math.inf else high if number == math.inf else low
    return max(low, min(high, number))


def variance(values: Sequence[float]) -> float:
    """Population variance; ``0.0`` for fewer than two values."""

    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Trajectory(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    UNKNOWN = "unknown"


@dataclass
class PracticeRecord:
    timestamp: str
    performance: float
    difficulty: float
    time_spent: Optional[float] = None
    hints_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "performance": self.performance,
            "difficulty": self.difficulty,
            "time_spent": self.time_spent,
            "hints_used": self.hints_used,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PracticeRecord":
        time_spent = payload.get("time_spent")
        return cls(
            timestamp=str(payload.get("timestamp") or _utc_now()),
            performance=clamp(payload.get("performance"), default=DEFAULT_MASTERY),
            difficulty=clamp(payload.get("difficulty"), 1.0, 5.0, default=3.0),
            time_spent=None if time_spent is None else max(0.0, float(time_spent)),
            hints_used=max(0, int(payload.get("hints_used") or 0)),
        )


@dataclass
class SkillState:
    """Mastery estimate for one skill of one learner."""

    current: float = DEFAULT_MASTERY
    target: float = DEFAULT_TARGET
    confidence: float = DEFAULT_CONFIDENCE
    trajectory: Trajectory = Trajectory.UNKNOWN
    learning_velocity: float = 0.0
    practice_history: List[PracticeRecord] = field(default_factory=list)
    last_assessed: Optional[str] = None

    def __post_init__(self) -> None:
        self.current = clamp(self.current, default=DEFAULT_MASTERY)
        self.target = clamp(self.target, default=DEFAULT_TARGET)
        self.confidence = clamp(self.confidence, MIN_CONFIDENCE, 1.0, default=DEFAULT_CONFIDENCE)
        if len(self.practice_history) > PRACTICE_HISTORY_LIMIT:
            self.practice_history = self.practice_history[-PRACTICE_HISTORY_LIMIT:]

    def record_practice(self, record: PracticeRecord) -> None:
        """Append ``record``, dropping the oldest entries beyond the history cap."""

        self.practice_history.append(record)
        overflow = len(self.practice_history) - PRACTICE_HISTORY_LIMIT
        if overflow > 0:
            del self.practice_history[:overflow]

    def recent_performances(self, count: int = 5) -> List[float]:
        return [record.performance for record in self.practice_history[-count:]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "target": self.target,
            "confidence": self.confidence,
            "trajectory": self.trajectory.value,
            "learning_velocity": self.learning_velocity,
            "practice_history": [record.to_dict() for record in self.practice_history],
            "last_assessed": self.last_assessed,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SkillState":
        try:
            trajectory = Trajectory(payload.get("trajectory", Trajectory.UNKNOWN.value))
        except ValueError:
            trajectory = Trajectory.UNKNOWN
        return cls(
            current=payload.get("current", DEFAULT_MASTERY),
            target=payload.get("target", DEFAULT_TARGET),
            confidence=payload.get("confidence", DEFAULT_CONFIDENCE),
            trajectory=trajectory,
            learning_velocity=float(payload.get("learning_velocity") or 0.0),
            practice_history=[
                PracticeRecord.from_dict(item) for item in payload.get("practice_history", []) or []
            ],
            last_assessed=payload.get("last_assessed"),
        )


@dataclass
class ActivityRecord:
    """Entry of the learner's activity log."""

    timestamp: str
    performance: float
    difficulty: float = 3.0
    time_spent: Optional[float] = None
    topic: Optional[str] = None
    activity: str = "practice"
    skills: List[str] = field(default_factory=list)
    hints_used: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "performance": self.performance,
            "difficulty": self.difficulty,
            "time_spent": self.time_spent,
            "topic": self.topic,
            "activity": self.activity,
            "skills": list(self.skills),
            "hints_used": self.hints_used,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ActivityRecord":
        time_spent = payload.get("time_spent")
        hints_used = payload.get("hints_used")
        return cls(
            timestamp=str(payload.get("timestamp") or _utc_now()),
            performance=clamp(payload.get("performance"), default=DEFAULT_MASTERY),
            difficulty=clamp(payload.get("difficulty"), 1.0, 5.0, default=3.0),
            time_spent=None if time_spent is None else max(0.0, float(time_spent)),
            topic=payload.get("topic"),
            activity=str(payload.get("activity") or "practice"),
            skills=[str(skill) for skill in payload.get("skills", []) or []],
            hints_used=None if hints_used is None else max(0, int(hints_used)),
        )


@dataclass
class UserProfile:
    learning_style: str = "visual"
    preferred_difficulty: int = 5
    time_available: float = 30.0  # minutes per session

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learning_style": self.learning_style,
            "preferred_difficulty": self.preferred_difficulty,
            "time_available": self.time_available,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserProfile":
        style = str(payload.get("learning_style") or "visual")
        return cls(
            learning_style=style if style in LEARNING_STYLES else "visual",
            preferred_difficulty=int(clamp(payload.get("preferred_difficulty"), 1, 5, default=5)),
            time_available=max(1.0, float(payload.get("time_available") or 30.0)),
        )


@dataclass
class UserStatistics:
    total_sessions: int = 0
    total_time_spent: float = 0.0
    average_score: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "total_time_spent": self.total_time_spent,
            "average_score": self.average_score,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserStatistics":
        return cls(
            total_sessions=int(payload.get("total_sessions") or 0),
            total_time_spent=float(payload.get("total_time_spent") or 0.0),
            average_score=clamp(payload.get("average_score"), default=0.0),
            current_streak=int(payload.get("current_streak") or 0),
            longest_streak=int(payload.get("longest_streak") or 0),
        )


@dataclass
class SkillGap:
    skill_id: str
    current: float
    target: float
    gap: float
    priority: float
    estimated_sessions: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "current": self.current,
            "target": self.target,
            "gap": self.gap,
            "priority": self.priority,
            "estimated_sessions": self.estimated_sessions,
        }


@dataclass
class ConceptMastery:
    """Attempt counts and recurring error types for one tested concept."""

    attempts: int = 0
    correct: int = 0
    average_score: float = 0.0
    last_attempt: Optional[str] = None
    common_errors: List[Dict[str, Any]] = field(default_factory=list)
    mastery_level: float = 0.0

    def record(self, score: float, errors: Sequence[Mapping[str, Any]] = (), timestamp: Optional[str] = None) -> None:
        self.attempts += 1
        if score >= CONCEPT_CORRECT_THRESHOLD:
            self.correct += 1
        self.average_score += (score - self.average_score) / self.attempts
        self.last_attempt = timestamp or _utc_now()
        for error in errors:
            error_type = str(error.get("type") or "unknown")
            existing = next((item for item in self.common_errors if item["type"] == error_type), None)
            if existing is not None:
                existing["count"] += 1
            else:
                self.common_errors.append(
                    {"type": error_type, "count": 1, "description": str(error.get("description") or "")}
                )
        self.mastery_level = self.correct / self.attempts

    def error_count(self) -> int:
        return sum(int(item.get("count", 0)) for item in self.common_errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "correct": self.correct,
            "average_score": self.average_score,
            "last_attempt": self.last_attempt,
            "common_errors": [dict(item) for item in self.common_errors],
            "mastery_level": self.mastery_level,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConceptMastery":
        attempts = max(0, int(payload.get("attempts") or 0))
        correct = min(attempts, max(0, int(payload.get("correct") or 0)))
        return cls(
            attempts=attempts,
            correct=correct,
            average_score=clamp(payload.get("average_score"), default=0.0),
            last_attempt=payload.get("last_attempt"),
            common_errors=[
                {
                    "type": str(item.get("type") or "unknown"),
                    "count": max(0, int(item.get("count") or 0)),
                    "description": str(item.get("description") or ""),
                }
                for item in payload.get("common_errors", []) or []
                if isinstance(item, Mapping)
            ],
            mastery_level=correct / attempts if attempts else 0.0,
        )


@dataclass
class ConceptWeakness:
    concept: str
    mastery_level: float
    attempts: int
    common_errors: List[Dict[str, Any]]
    last_attempt: Optional[str]
    priority: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "concept": self.concept,
            "mastery_level": self.mastery_level,
            "attempts": self.attempts,
            "common_errors": [dict(item) for item in self.common_errors],
            "last_attempt": self.last_attempt,
            "priority": self.priority,
        }


@dataclass
class ErrorPatterns:
    """Error counts by type and by topic, plus a bounded per-activity trend."""

    by_type: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    by_topic: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    temporal_trends: List[Dict[str, Any]] = field(default_factory=list)

    def record(self, errors: Sequence[Mapping[str, Any]], topic: Optional[str], timestamp: Optional[str] = None) -> None:
        timestamp = timestamp or _utc_now()
        topic_key = topic or "general"
        for error in errors:
            error_type = str(error.get("type") or "unknown")
            type_bucket = self.by_type.setdefault(error_type, {"count": 0, "topics": [], "recent": []})
            type_bucket["count"] += 1
            if topic_key not in type_bucket["topics"]:
                type_bucket["topics"].append(topic_key)
            type_bucket["recent"].append({"timestamp": timestamp, "topic": topic_key})
            del type_bucket["recent"][:-RECENT_ERRORS_LIMIT]

            topic_bucket = self.by_topic.setdefault(topic_key, {"total": 0, "types": {}})
            topic_bucket["total"] += 1
            topic_bucket["types"][error_type] = topic_bucket["types"].get(error_type, 0) + 1

        self.temporal_trends.append({"timestamp": timestamp, "error_count": len(errors), "topic": topic_key})
        del self.temporal_trends[:-ERROR_TRENDS_LIMIT]

    def most_frequent_type(self) -> Optional[str]:
        if not self.by_type:
            return None
        return max(self.by_type, key=lambda error_type: self.by_type[error_type]["count"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "by_type": {
                key: {"count": value["count"], "topics": list(value["topics"]), "recent": [dict(item) for item in value["recent"]]}
                for key, value in self.by_type.items()
            },
            "by_topic": {
                key: {"total": value["total"], "types": dict(value["types"])} for key, value in self.by_topic.items()
            },
            "temporal_trends": [dict(item) for item in self.temporal_trends],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ErrorPatterns":
        by_type = {
            str(key): {
                "count": int(value.get("count") or 0),
                "topics": [str(topic) for topic in value.get("topics", []) or []],
                "recent": [dict(item) for item in value.get("recent", []) or []][-RECENT_ERRORS_LIMIT:],
            }
            for key, value in (payload.get("by_type") or {}).items()
            if isinstance(value, Mapping)
        }
        by_topic = {
            str(key): {
                "total": int(value.get("total") or 0),
                "types": {str(name): int(count) for name, count in (value.get("types") or {}).items()},
            }
            for key, value in (payload.get("by_topic") or {}).items()
            if isinstance(value, Mapping)
        }
        trends = [dict(item) for item in payload.get("temporal_trends", []) or [] if isinstance(item, Mapping)]
        return cls(by_type=by_type, by_topic=by_topic, temporal_trends=trends[-ERROR_TRENDS_LIMIT:])


def _empty_style_analysis() -> Dict[str, Dict[str, float]]:
    return {style: {"score": 0.0, "activities": 0} for style in LEARNING_STYLES}


@dataclass
class UserModel:
    """Everything the engine knows about one learner.

    Only ``skills``, ``activity_log``, ``profile``, ``statistics``,
    ``learning_style_analysis``, ``concept_mastery`` and ``error_patterns`` are
    persisted. The remaining attributes are aggregates recomputed by
    :meth:`refresh_derived`.
    """

    user_id: str
    skills: Dict[str, SkillState] = field(default_factory=dict)
    activity_log: List[ActivityRecord] = field(default_factory=list)
    profile: UserProfile = field(default_factory=UserProfile)
    statistics: UserStatistics = field(default_factory=UserStatistics)
    learning_style_analysis: Dict[str, Dict[str, float]] = field(default_factory=_empty_style_analysis)
    concept_mastery: Dict[str, ConceptMastery] = field(default_factory=dict)
    error_patterns: ErrorPatterns = field(default_factory=ErrorPatterns)

    overall_ability: float = DEFAULT_MASTERY
    learning_velocity: float = 0.0
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    skill_gaps: List[SkillGap] = field(default_factory=list)
    engagement_score: float = 0.5
    predicted_performance: float = DEFAULT_MASTERY
    mastery_levels: Dict[str, int] = field(default_factory=dict)
    concept_weaknesses: List[ConceptWeakness] = field(default_factory=list)
    difficulty_preference: Optional[Dict[str, Any]] = None
    optimal_learning_time: Optional[Dict[str, Any]] = None
    ml_prediction: Optional[float] = None

    # ------------------------------------------------------------------
    @classmethod
    def create_default(cls, user_id: str, catalog: Optional[SkillCatalog] = None) -> "UserModel":
        """Seed every catalog skill at 0.5 mastery with the default target."""

        catalog = catalog or DEFAULT_CATALOG
        model = cls(user_id=user_id, skills={skill_id: SkillState() for skill_id in catalog})
        model.refresh_derived()
        return model

    # ------------------------------------------------------------------
    def skill_level(self, skill_id: str, default: float = 0.0) -> float:
        state = self.skills.get(skill_id)
        return state.current if state is not None else default

    def average_level(self, skill_ids: Iterable[str], default: float = 0.0) -> float:
        levels = [self.skill_level(skill_id, default) for skill_id in skill_ids]
        if not levels:
            return default
        return sum(levels) / len(levels)

    # ------------------------------------------------------------------
    def append_activity(self, record: ActivityRecord) -> None:
        self.activity_log.append(record)
        if len(self.activity_log) > ACTIVITY_LOG_LIMIT:
            self.activity_log = self.activity_log[-ACTIVITY_LOG_KEEP:]

    # ------------------------------------------------------------------
    def refresh_derived(self) -> None:
        states = list(self.skills.values())
        self.overall_ability = sum(s.current for s in states) / len(states) if states else DEFAULT_MASTERY
        self.learning_velocity = _activity_velocity(self.activity_log)
        self.strengths = [sid for sid, s in self.skills.items() if s.current >= STRENGTH_THRESHOLD]
        self.weaknesses = [sid for sid, s in self.skills.items() if s.current < WEAKNESS_THRESHOLD]
        self.skill_gaps = self._identify_skill_gaps()
        self.engagement_score = _engagement(self.activity_log)
        self.predicted_performance = clamp(self.overall_ability + self.learning_velocity * 0.1)
        self.mastery_levels = _mastery_histogram(states)
        self.concept_weaknesses = self._identify_concept_weaknesses()
        self.difficulty_preference = predict_preferred_difficulty(self.activity_log)
        self.optimal_learning_time = predict_optimal_learning_time(self.activity_log)

    def _identify_skill_gaps(self) -> List[SkillGap]:
        gaps: List[SkillGap] = []
        for skill_id, state in self.skills.items():
            gap = state.target - state.current
            if gap <= SKILL_GAP_THRESHOLD:
                continue
            gaps.append(
                SkillGap(
                    skill_id=skill_id,
                    current=state.current,
                    target=state.target,
                    gap=gap,
                    priority=self._gap_priority(skill_id, state),
                    estimated_sessions=_sessions_to_close(state, gap),
                )
            )
        gaps.sort(key=lambda item: item.priority, reverse=True)
        return gaps

    def _identify_concept_weaknesses(self) -> List[ConceptWeakness]:
        now = datetime.now(timezone.utc)
        weaknesses = [
            ConceptWeakness(
                concept=concept,
                mastery_level=mastery.mastery_level,
                attempts=mastery.attempts,
                common_errors=[dict(item) for item in mastery.common_errors[:3]],
                last_attempt=mastery.last_attempt,
                priority=_concept_priority(mastery, now),
            )
            for concept, mastery in self.concept_mastery.items()
            if mastery.mastery_level < CONCEPT_WEAKNESS_THRESHOLD
        ]
        weaknesses.sort(key=lambda item: item.priority, reverse=True)
        return weaknesses

    def _gap_priority(self, skill_id: str, state: SkillState) -> float:
        category = skill_id.split(".", 1)[0]
        peers = sum(
            1 for other in self.skills if other != skill_id and other.split(".", 1)[0] == category
        )
        priority = peers * 10.0
        if state.trajectory is Trajectory.DECLINING:
            priority += 20.0
        priority += (1.0 - state.confidence) * 15.0
        return priority

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "skills": {skill_id: state.to_dict() for skill_id, state in self.skills.items()},
            "activity_log": [record.to_dict() for record in self.activity_log],
            "profile": self.profile.to_dict(),
            "statistics": self.statistics.to_dict(),
            "learning_style_analysis": {
                style: dict(values) for style, values in self.learning_style_analysis.items()
            },
            "concept_mastery": {concept: mastery.to_dict() for concept, mastery in self.concept_mastery.items()},
            "error_patterns": self.error_patterns.to_dict(),
        }

    def snapshot(self) -> Dict[str, Any]:
        """Persisted fields plus the current aggregates, for read-only consumers."""

        payload = self.to_dict()
        payload.update(
            {
                "overall_ability": self.overall_ability,
                "learning_velocity": self.learning_velocity,
                "strengths": list(self.strengths),
                "weaknesses": list(self.weaknesses),
                "skill_gaps": [gap.to_dict() for gap in self.skill_gaps],
                "engagement_score": self.engagement_score,
                "predicted_performance": self.predicted_performance,
                "mastery_levels": dict(self.mastery_levels),
                "concept_weaknesses": [weakness.to_dict() for weakness in self.concept_weaknesses],
                "difficulty_preference": self.difficulty_preference,
                "optimal_learning_time": self.optimal_learning_time,
                "ml_prediction": self.ml_prediction,
            }
        )
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], catalog: Optional[SkillCatalog] = None) -> "UserModel":
        """Rebuild a model from :meth:`to_dict` output and recompute aggregates.

        Catalog skills missing from ``payload`` are seeded with defaults and
        stored skills outside the catalog are dropped.
        """

        catalog = catalog or DEFAULT_CATALOG
        stored = payload.get("skills", {}) or {}
        skills: Dict[str, SkillState] = {}
        for skill_id in catalog:
            raw = stored.get(skill_id)
            skills[skill_id] = SkillState.from_dict(raw) if isinstance(raw, Mapping) else SkillState()
        analysis = _empty_style_analysis()
        for style, values in (payload.get("learning_style_analysis") or {}).items():
            if style in analysis and isinstance(values, Mapping):
                analysis[style] = {
                    "score": float(values.get("score") or 0.0),
                    "activities": int(values.get("activities") or 0),
                }
        model = cls(
            user_id=str(payload.get("user_id", "")),
            skills=skills,
            activity_log=[ActivityRecord.from_dict(item) for item in payload.get("activity_log", []) or []],
            profile=UserProfile.from_dict(payload.get("profile") or {}),
            statistics=UserStatistics.from_dict(payload.get("statistics") or {}),
            learning_style_analysis=analysis,
            concept_mastery={
                str(concept): ConceptMastery.from_dict(value)
                for concept, value in (payload.get("concept_mastery") or {}).items()
                if isinstance(value, Mapping)
            },
            error_patterns=ErrorPatterns.from_dict(payload.get("error_patterns") or {}),
        )
        if len(model.activity_log) > ACTIVITY_LOG_LIMIT:
            model.activity_log = model.activity_log[-ACTIVITY_LOG_KEEP:]
        model.refresh_derived()
        return model


def _activity_velocity(history: Sequence[ActivityRecord]) -> float:
    if len(history) < 5:
        return 0.0
    recent = history[-10:]
    deltas = [recent[i].performance - recent[i - 1].performance for i in range(1, len(recent))]
    return sum(deltas) / len(deltas)


def _engagement(history: Sequence[ActivityRecord]) -> float:
    if len(history) < 3:
        return 0.5
    recent = history[-7:]
    minutes = [(record.time_spent or 0.0) / 60.0 for record in recent]
    average_minutes = sum(minutes) / len(minutes)
    consistency = max(0.0, 1.0 - variance(minutes))
    return clamp(average_minutes / 30.0 * consistency)


def _sessions_to_close(state: SkillState, gap: float) -> int:
    base = gap * 10.0
    velocity_factor = 1.0 / (1.0 + state.learning_velocity) if state.learning_velocity > 0 else 1.5
    level_factor = 1.5 if state.current < 0.3 else 1.0
    return int(math.ceil(base * velocity_factor * level_factor))


def _mastery_histogram(states: Iterable[SkillState]) -> Dict[str, int]:
    histogram = {"novice": 0, "developing": 0, "proficient": 0, "master": 0}
    for state in states:
        if state.current < 0.4:
            histogram["novice"] += 1
        elif state.current < 0.6:
            histogram["developing"] += 1
        elif state.current < 0.8:
            histogram["proficient"] += 1
        else:
            histogram["master"] += 1
    return histogram


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _concept_priority(mastery: ConceptMastery, now: datetime) -> float:
    """Frequently attempted, error-prone and recently seen concepts rank first."""

    priority = mastery.attempts * (1.0 - mastery.mastery_level) * 10.0
    priority += mastery.error_count() * 5.0
    last = _parse_timestamp(mastery.last_attempt)
    if last is not None and (now - last).total_seconds() < CONCEPT_RECENCY_DAYS * 86400:
        priority += 15.0
    return priority


def predict_preferred_difficulty(history: Sequence[ActivityRecord]) -> Optional[Dict[str, Any]]:
    """Difficulty level with the best mean performance over the last 20 activities."""

    recent = history[-DIFFICULTY_WINDOW:]
    if len(recent) < MIN_PATTERN_ACTIVITIES:
        return None
    by_level: Dict[int, List[float]] = {}
    for record in recent:
        by_level.setdefault(int(round(record.difficulty)), []).append(record.performance)

    best_level, best_mean = 3, 0.0
    for level, performances in by_level.items():
        mean = sum(performances) / len(performances)
        if mean > best_mean:
            best_level, best_mean = level, mean
    samples = len(by_level.get(best_level, []))
    return {
        "level": best_level,
        "confidence": 0.7 if samples > 3 else 0.5,
        "reason": f"Best performance at difficulty level {best_level}",
    }


def predict_optimal_learning_time(history: Sequence[ActivityRecord]) -> Optional[Dict[str, Any]]:
    """Hour of day with the best mean performance over the last 30 activities.

    Hours are taken from the recorded timestamps as stored.
    """

    recent = history[-PATTERN_WINDOW:]
    if len(recent) < MIN_PATTERN_ACTIVITIES:
        return None
    by_hour: Dict[int, List[float]] = {}
    for record in recent:
        parsed = _parse_timestamp(record.timestamp)
        if parsed is not None:
            by_hour.setdefault(parsed.hour, []).append(record.performance)
    if not by_hour:
        return None

    means = {hour: sum(values) / len(values) for hour, values in by_hour.items()}
    best_hour = max(means, key=lambda hour: means[hour])
    spread = means[best_hour] - min(means.values())
    return {
        "best_hour": best_hour,
        "confidence": 0.8 if spread > 0.1 else 0.6,
        "reason": f"Best learning time: {best_hour:02d}:00",
    }


__all__ = [
    "ACTIVITY_LOG_KEEP",
    "ACTIVITY_LOG_LIMIT",
    "ActivityRecord",
    "ConceptMastery",
    "ConceptWeakness",
    "ERROR_TRENDS_LIMIT",
    "ErrorPatterns",
    "PRACTICE_HISTORY_LIMIT",
    "PracticeRecord",
    "RECENT_ERRORS_LIMIT",
    "SkillGap",
    "SkillState",
    "Trajectory",
    "UserModel",
    "UserProfile",
    "UserStatistics",
    "clamp",
    "predict_optimal_learning_time",
    "predict_preferred_difficulty",
    "variance",
]
