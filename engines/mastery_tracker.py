"""Incremental skill mastery updates driven by practice activity."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from schemas import ActivityEvent
from skill_catalog import DEFAULT_CATALOG, SkillCatalog
from structured_log import log_json
from user_model import (
    LEARNING_STYLES,
    ActivityRecord,
    ConceptMastery,
    PracticeRecord,
    SkillState,
    Trajectory,
    UserModel,
    clamp,
    variance,
)

logger = logging.getLogger(__name__)

BASE_LEARNING_RATE = 0.1
SECONDS_PER_DIFFICULTY = 60.0
CONFIDENCE_WINDOW = 5
MIN_SAMPLES = 3
TRAJECTORY_THRESHOLD = 0.05
RECENCY_BASE = 1.2
STREAK_THRESHOLD = 0.7
SCORE_MOVING_WEIGHT = 0.1
FEATURE_WINDOW = 5
RECURRING_ERROR_COUNT = 3

_STYLE_KEYWORDS: Dict[str, tuple] = {
    "visual": ("diagram", "visual"),
    "auditory": ("audio", "explain"),
    "kinesthetic": ("interactive", "game"),
    "reading": ("text", "read"),
}


class Predictor(Protocol):
    def predict(self, features: Sequence[float]) -> Optional[float]:
        ...


@dataclass(frozen=True)
class PracticeContext:
    """Optional measurements attached to a practice attempt."""

    time_spent: Optional[float] = None
    hints_used: Optional[int] = None
    timestamp: Optional[str] = None


def optimal_time_ratio(time_spent: Optional[float], difficulty: float) -> Optional[float]:
    if not time_spent:
        return None
    return time_spent / (difficulty * SECONDS_PER_DIFFICULTY)


def adaptive_learning_rate(state: SkillState, difficulty: float, context: PracticeContext) -> float:
    rate = BASE_LEARNING_RATE
    if state.current < 0.3:
        rate *= 1.5
    elif state.current > 0.8:
        rate *= 0.7
    ratio = optimal_time_ratio(context.time_spent, difficulty)
    if ratio is not None and 0.5 < ratio < 1.5:
        rate *= 1.2
    if context.hints_used == 0:
        rate *= 1.1
    return rate


def time_efficiency_factor(time_spent: Optional[float], difficulty: float) -> float:
    ratio = optimal_time_ratio(time_spent, difficulty)
    if ratio is None:
        return 1.0
    if 0.7 <= ratio <= 1.3:
        return 1.1
    if 0.5 <= ratio <= 1.5:
        return 1.0
    if ratio < 0.3 or ratio > 2.0:
        return 0.8
    return 0.9


def recency_weight(performances: Sequence[float]) -> float:
    """Mean of ``performances`` weighted ``1.2**i`` towards the latest entry."""

    if not performances:
        return 0.5
    weights = [RECENCY_BASE ** index for index in range(len(performances))]
    return sum(p * w for p, w in zip(performances, weights)) / sum(weights)


def build_feature_vector(history: Sequence[ActivityRecord]) -> Optional[List[float]]:
    """Predictor features from the last five activities, ``None`` when fewer exist.

    Order: mean performance, mean time spent, mean difficulty, success rate
    (performance >= 0.8), absolute change between first and last.
    """

    if len(history) < FEATURE_WINDOW:
        return None
    recent = history[-FEATURE_WINDOW:]
    count = float(len(recent))
    performances = [record.performance for record in recent]
    return [
        sum(performances) / count,
        sum((record.time_spent or 0.0) for record in recent) / count,
        sum((record.difficulty or 3.0) for record in recent) / count,
        sum(1 for value in performances if value >= 0.8) / count,
        abs(performances[-1] - performances[0]),
    ]


class SkillMasteryTracker:
    """Applies the directional mastery update and keeps learner aggregates fresh."""

    def __init__(
        self,
        catalog: Optional[SkillCatalog] = None,
        predictor: Optional[Predictor] = None,
        *,
        emit_events: bool = True,
    ) -> None:
        self.catalog = catalog or DEFAULT_CATALOG
        self.predictor = predictor
        self.emit_events = emit_events

    # ------------------------------------------------------------------
    def update_skill(
        self,
        user_model: UserModel,
        skill_id: str,
        performance: float,
        difficulty: float,
        context: Optional[Union[PracticeContext, Mapping[str, Any]]] = None,
    ) -> Optional[SkillState]:
        """Move ``skill_id`` towards ``performance``; unknown skills are ignored."""

        state = user_model.skills.get(skill_id)
        if state is None:
            logger.debug("Ignoring update for untracked skill %s (user %s)", skill_id, user_model.user_id)
            return None
        ctx = _coerce_context(context)
        performance = clamp(performance, default=0.5)
        difficulty = clamp(difficulty, 1.0, 5.0, default=3.0)
        time_spent = ctx.time_spent
        if time_spent is not None:
            time_spent = clamp(time_spent, 0.0, float("inf"), default=0.0)
            ctx = PracticeContext(time_spent=time_spent, hints_used=ctx.hints_used, timestamp=ctx.timestamp)

        rate = adaptive_learning_rate(state, difficulty, ctx)
        delta = (performance - 0.5) * rate * (difficulty / 5.0) * time_efficiency_factor(time_spent, difficulty)
        state.current = clamp(state.current + delta)

        timestamp = ctx.timestamp or datetime.now(timezone.utc).isoformat()
        state.last_assessed = timestamp
        state.record_practice(
            PracticeRecord(
                timestamp=timestamp,
                performance=performance,
                difficulty=difficulty,
                time_spent=time_spent,
                hints_used=ctx.hints_used or 0,
            )
        )
        self._refresh_confidence(state)
        self._refresh_trajectory(state)
        return state

    # ------------------------------------------------------------------
    def _refresh_confidence(self, state: SkillState) -> None:
        recent = state.recent_performances(CONFIDENCE_WINDOW)
        if len(recent) < MIN_SAMPLES:
            return
        raw = (1.0 - variance(recent)) * recency_weight(recent)
        state.confidence = clamp(raw, 0.1, 1.0, default=0.1)

    # ------------------------------------------------------------------
    def _refresh_trajectory(self, state: SkillState) -> None:
        if len(state.practice_history) < MIN_SAMPLES:
            state.trajectory = Trajectory.UNKNOWN
            return
        recent = state.recent_performances(CONFIDENCE_WINDOW)
        deltas = [recent[i] - recent[i - 1] for i in range(1, len(recent))]
        state.learning_velocity = sum(deltas) / len(deltas)
        if state.learning_velocity > TRAJECTORY_THRESHOLD:
            state.trajectory = Trajectory.IMPROVING
        elif state.learning_velocity < -TRAJECTORY_THRESHOLD:
            state.trajectory = Trajectory.DECLINING
        else:
            state.trajectory = Trajectory.STABLE

    # ------------------------------------------------------------------
    def update_from_activity(
        self,
        user_model: UserModel,
        event: Union[ActivityEvent, Mapping[str, Any]],
    ) -> UserModel:
        """Record ``event`` and update every listed skill, statistics and aggregates.

        Skill ids outside the catalog are dropped with a warning before any
        state changes. Raises ``pydantic.ValidationError`` for malformed events.
        """

        if not isinstance(event, ActivityEvent):
            event = ActivityEvent.model_validate(event)
        known, unknown = self.catalog.filter_known(event.skills)
        if unknown:
            logger.warning("Dropping unknown skill ids for user %s: %s", user_model.user_id, unknown)

        timestamp = event.timestamp.isoformat()
        record = ActivityRecord(
            timestamp=timestamp,
            performance=event.score,
            difficulty=event.difficulty,
            time_spent=event.time_spent,
            topic=event.topic,
            activity=event.activity,
            skills=known,
            hints_used=event.hints_used,
        )
        user_model.append_activity(record)

        context = PracticeContext(time_spent=event.time_spent, hints_used=event.hints_used, timestamp=timestamp)
        for skill_id in known:
            self.update_skill(user_model, skill_id, event.score, event.difficulty, context)

        errors = [error.model_dump() for error in event.errors]
        for concept in event.concepts_tested:
            user_model.concept_mastery.setdefault(concept, ConceptMastery()).record(event.score, errors, timestamp)
        if errors:
            user_model.error_patterns.record(errors, event.topic, timestamp)

        self._update_statistics(user_model, event)
        self._update_learning_style(user_model, record)
        user_model.refresh_derived()
        user_model.ml_prediction = self._predict(user_model)

        if self.emit_events:
            log_json(
                "activity_recorded",
                {
                    "user_id": user_model.user_id,
                    "topic": event.topic,
                    "skills": known,
                    "score": event.score,
                    "errors": len(errors),
                    "overall_ability": round(user_model.overall_ability, 4),
                    "ml_prediction": user_model.ml_prediction,
                },
            )
        return user_model

    # ------------------------------------------------------------------
    def _update_statistics(self, user_model: UserModel, event: ActivityEvent) -> None:
        stats = user_model.statistics
        stats.total_sessions += 1
        stats.total_time_spent += event.time_spent or 0.0
        stats.average_score = stats.average_score * (1 - SCORE_MOVING_WEIGHT) + event.score * SCORE_MOVING_WEIGHT
        if event.score >= STREAK_THRESHOLD:
            stats.current_streak += 1
            stats.longest_streak = max(stats.longest_streak, stats.current_streak)
        else:
            stats.current_streak = 0

    # ------------------------------------------------------------------
    def _update_learning_style(self, user_model: UserModel, record: ActivityRecord) -> None:
        activity = (record.activity or "").lower()
        analysis = user_model.learning_style_analysis
        for style, keywords in _STYLE_KEYWORDS.items():
            if any(keyword in activity for keyword in keywords):
                bucket = analysis.setdefault(style, {"score": 0.0, "activities": 0})
                bucket["activities"] += 1
                bucket["score"] += record.performance

        best_style, best_score = "visual", 0.0
        for style in LEARNING_STYLES:
            bucket = analysis.get(style) or {}
            count = bucket.get("activities", 0)
            average = bucket.get("score", 0.0) / count if count else 0.0
            if average > best_score:
                best_style, best_score = style, average
        user_model.profile.learning_style = best_style

    # ------------------------------------------------------------------
    def _predict(self, user_model: UserModel) -> Optional[float]:
        if self.predictor is None:
            return None
        features = build_feature_vector(user_model.activity_log)
        if features is None:
            return None
        try:
            value = self.predictor.predict(features)
        except Exception:
            logger.warning("Performance predictor failed for user %s", user_model.user_id, exc_info=True)
            return None
        if value is None:
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.warning("Discarding non-numeric prediction %r for user %s", value, user_model.user_id)
            return None
        if not math.isfinite(number):
            return None
        return clamp(number)

    # ------------------------------------------------------------------
    def recommendations(self, user_model: UserModel) -> List[Dict[str, Any]]:
        recs: List[Dict[str, Any]] = []
        if user_model.ml_prediction is not None and user_model.ml_prediction < 0.6:
            recs.append(
                {
                    "type": "performance_boost",
                    "priority": "high",
                    "reason": f"Predicted performance {round(user_model.ml_prediction * 100)}%, focus on fundamentals",
                }
            )
        if user_model.weaknesses:
            recs.append(
                {
                    "type": "remediation",
                    "skills": user_model.weaknesses[:2],
                    "reason": "Focus on improving weak areas",
                }
            )
        if user_model.concept_weaknesses:
            recs.append(
                {
                    "type": "concept_review",
                    "concepts": [weakness.concept for weakness in user_model.concept_weaknesses[:3]],
                    "reason": "Revisit concepts answered incorrectly most often",
                }
            )
        frequent = user_model.error_patterns.most_frequent_type()
        if frequent is not None and user_model.error_patterns.by_type[frequent]["count"] >= RECURRING_ERROR_COUNT:
            recs.append(
                {
                    "type": "error_pattern",
                    "error_type": frequent,
                    "reason": f"Recurring {frequent} errors; practice targeted exercises",
                }
            )
        if user_model.learning_velocity < -TRAJECTORY_THRESHOLD:
            recs.append({"type": "review", "reason": "Recent performance suggests need for review"})
        if user_model.engagement_score < 0.3:
            recs.append({"type": "engagement", "reason": "Try different activity types to increase engagement"})
        return recs


def _coerce_context(context: Optional[Union[PracticeContext, Mapping[str, Any]]]) -> PracticeContext:
    if context is None:
        return PracticeContext()
    if isinstance(context, PracticeContext):
        return context
    hints = context.get("hints_used")
    if hints is None and isinstance(context.get("hints"), (list, tuple)):
        hints = len(context["hints"])
    time_spent = context.get("time_spent")
    return PracticeContext(
        time_spent=None if time_spent is None else float(time_spent),
        hints_used=None if hints is None else int(hints),
        timestamp=context.get("timestamp"),
    )


__all__ = [
    "PracticeContext",
    "Predictor",
    "SkillMasteryTracker",
    "adaptive_learning_rate",
    "build_feature_vector",
    "recency_weight",
    "time_efficiency_factor",
]
