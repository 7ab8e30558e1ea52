"""Multi-strategy learning plan generation with score-based selection."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from curriculum import CurriculumGraph, Topic
from engines.knowledge_reasoner import KnowledgeBase
from schemas import ConceptContent, PlanningConstraints
from structured_log import log_json
from user_model import UserModel, clamp

logger = logging.getLogger(__name__)

CRITICAL_PATH_LIMIT = 10
PREREQUISITE_PLANNING_MASTERY = 0.6
SOFT_SCORE_THRESHOLD = 0.6
ENGAGING_STRETCH = 2
MIN_STYLE_SHARE = 0.15
MAX_ACTIVITY_SHARE = 0.5
SIMULATED_GAIN = 0.1
OUTCOME_CONFIDENCE = 0.7
WEEKS_PER_PLAN = 4

STRATEGY_CONFIDENCE = {
    "shortest_path": 0.8,
    "constraint_satisfaction": 0.9,
}

_STYLE_ACTIVITIES = {
    "visual": ("diagram_creation", "Create visual representations of {name}"),
    "auditory": ("explanation", "Explain {name} out loud"),
    "kinesthetic": ("hands_on", "Apply {name} through practical exercises"),
    "reading": ("note_taking", "Take detailed notes on {name}"),
}


class PlanStateError(ValueError):
    """Raised on an illegal plan status transition."""


class PlanStatus(str, Enum):
    DRAFT = "draft"
    SCORED = "scored"
    SELECTED = "selected"
    SCHEDULED = "scheduled"
    DISCARDED = "discarded"


_TRANSITIONS = {
    PlanStatus.DRAFT: {PlanStatus.SCORED},
    PlanStatus.SCORED: {PlanStatus.SELECTED, PlanStatus.DISCARDED},
    PlanStatus.SELECTED: {PlanStatus.SCHEDULED},
    PlanStatus.SCHEDULED: set(),
    PlanStatus.DISCARDED: set(),
}


@dataclass(frozen=True)
class PlanningItem:
    """A plannable unit: a curriculum topic or a freeform concept."""

    id: str
    name: str
    difficulty: int
    estimated_minutes: float
    skills: tuple = ()
    prerequisites: tuple = ()
    objectives: tuple = ()

    @classmethod
    def from_topic(cls, topic: Topic) -> "PlanningItem":
        return cls(
            id=topic.id,
            name=topic.name,
            difficulty=topic.difficulty,
            estimated_minutes=topic.estimated_minutes,
            skills=tuple(topic.skills),
            prerequisites=tuple(topic.prerequisites),
            objectives=tuple(topic.objectives),
        )

    @classmethod
    def from_concept(cls, concept: ConceptContent) -> "PlanningItem":
        return cls(
            id=concept.id,
            name=concept.name,
            difficulty=concept.difficulty,
            estimated_minutes=concept.duration_minutes,
            skills=tuple(concept.skills),
            prerequisites=tuple(concept.prerequisites),
        )


@dataclass
class Session:
    topic_id: str
    name: str
    activities: List[Dict[str, Any]]
    prerequisites: List[str]
    objectives: List[str]
    duration: float
    difficulty: int
    skills: List[str]
    soft_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "topic_id": self.topic_id,
            "name": self.name,
            "activities": [dict(activity) for activity in self.activities],
            "prerequisites": list(self.prerequisites),
            "objectives": list(self.objectives),
            "duration": self.duration,
            "difficulty": self.difficulty,
            "skills": list(self.skills),
        }
        if self.soft_score is not None:
            payload["soft_score"] = self.soft_score
        return payload


@dataclass
class Plan:
    strategy: str
    budget: float
    sessions: List[Session] = field(default_factory=list)
    expected_outcomes: List[Dict[str, Any]] = field(default_factory=list)
    confidence: float = 0.0
    score: Optional[float] = None
    status: PlanStatus = PlanStatus.DRAFT
    adaptive_elements: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_time(self) -> float:
        return sum(session.duration for session in self.sessions)

    def transition(self, new_status: PlanStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise PlanStateError(f"Cannot move plan from {self.status.value} to {new_status.value}")
        self.status = new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "budget": self.budget,
            "total_time": self.total_time,
            "sessions": [session.to_dict() for session in self.sessions],
            "expected_outcomes": [dict(outcome) for outcome in self.expected_outcomes],
            "confidence": self.confidence,
            "score": self.score,
            "status": self.status.value,
            "adaptive_elements": self.adaptive_elements,
        }


def ideal_difficulty(skill: float) -> int:
    return int(max(1, min(5, math.floor(skill * 5) + 1)))


def difficulty_stretch(difficulty: int, skill_ids: Iterable[str], levels: Mapping[str, float]) -> int:
    """How many levels ``difficulty`` sits above (positive) or below the learner's ideal."""

    return difficulty - ideal_difficulty(_mean_level(skill_ids, levels, 0.5))


def adjusted_duration(item: PlanningItem, skill: float) -> float:
    """Scale the estimate by how far the item sits above or below the learner's level."""

    factor = 1.0 + 0.15 * (item.difficulty - ideal_difficulty(skill))
    factor = max(0.75, min(1.5, factor))
    return round(item.estimated_minutes * factor, 1)


def predict_session_improvement(session: Session, current_skill: float) -> float:
    return min(0.3, 0.1 + (1 - current_skill) * 0.5 + len(session.activities) * 0.1)


class LearningPathPlanner:
    """Runs the planning strategies and selects the highest scoring plan."""

    def __init__(self, curriculum: Optional[CurriculumGraph] = None, *, emit_events: bool = True) -> None:
        self.curriculum = curriculum
        self.emit_events = emit_events
        self.strategies: Dict[str, Callable[..., Plan]] = {
            "shortest_path": self.shortest_path_plan,
            "constraint_satisfaction": self.constraint_satisfaction_plan,
        }

    # ------------------------------------------------------------------
    def generate_optimal_plan(
        self,
        user_model: UserModel,
        constraints: Optional[Union[PlanningConstraints, Mapping[str, Any]]] = None,
        content: Optional[Iterable[Union[Topic, ConceptContent, PlanningItem]]] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> Plan:
        constraints = _coerce_constraints(constraints)
        plans = self.build_candidate_plans(user_model, constraints, content, knowledge_base)
        best = self.select_optimal_plan(plans, user_model)
        best.adaptive_elements = self.adaptive_elements(best, user_model)
        if self.emit_events:
            log_json(
                "plan_selected",
                {
                    "user_id": user_model.user_id,
                    "strategy": best.strategy,
                    "score": best.score,
                    "sessions": len(best.sessions),
                    "total_time": best.total_time,
                    "budget": best.budget,
                },
            )
        return best

    # ------------------------------------------------------------------
    def build_candidate_plans(
        self,
        user_model: UserModel,
        constraints: PlanningConstraints,
        content: Optional[Iterable[Union[Topic, ConceptContent, PlanningItem]]] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> List[Plan]:
        items = self._planning_items(content)
        return [
            strategy(user_model, items, constraints, knowledge_base)
            for strategy in self.strategies.values()
        ]

    # ------------------------------------------------------------------
    def _planning_items(
        self, content: Optional[Iterable[Union[Topic, ConceptContent, PlanningItem]]]
    ) -> List[PlanningItem]:
        if content is None:
            if self.curriculum is None:
                return []
            return [PlanningItem.from_topic(topic) for topic in self.curriculum]
        items: List[PlanningItem] = []
        for entry in content:
            if isinstance(entry, PlanningItem):
                items.append(entry)
            elif isinstance(entry, Topic):
                items.append(PlanningItem.from_topic(entry))
            elif isinstance(entry, ConceptContent):
                items.append(PlanningItem.from_concept(entry))
            else:
                raise TypeError(f"Unsupported planning content: {type(entry).__name__}")
        return items

    # ------------------------------------------------------------------
    def shortest_path_plan(
        self,
        user_model: UserModel,
        items: Sequence[PlanningItem],
        constraints: PlanningConstraints,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> Plan:
        plan = Plan(
            strategy="shortest_path",
            budget=constraints.weekly_budget,
            confidence=STRATEGY_CONFIDENCE["shortest_path"],
        )
        style = constraints.learning_style or user_model.profile.learning_style
        levels = _skill_levels(user_model)
        elapsed = 0.0
        for item in self.critical_path(user_model, items, knowledge_base):
            session = self._build_session(item, levels, style, knowledge_base)
            if elapsed + session.duration > plan.budget:
                break
            plan.sessions.append(session)
            elapsed += session.duration
        plan.expected_outcomes = self.predict_outcomes(plan.sessions, user_model)
        return plan

    # ------------------------------------------------------------------
    def critical_path(
        self,
        user_model: UserModel,
        items: Sequence[PlanningItem],
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> List[PlanningItem]:
        """Weakness-remediating items first, then prerequisite-free ones, capped at ten."""

        chosen: Dict[str, PlanningItem] = {}
        for weakness in user_model.weaknesses:
            for item in items:
                if weakness in item.skills and item.id not in chosen:
                    chosen[item.id] = item
        for item in items:
            if not item.prerequisites and item.id not in chosen:
                chosen[item.id] = item
        ordered = list(chosen.values())
        if knowledge_base is not None:
            ordered = _apply_reasoner_order(ordered, knowledge_base)
        return ordered[:CRITICAL_PATH_LIMIT]

    # ------------------------------------------------------------------
    def constraint_satisfaction_plan(
        self,
        user_model: UserModel,
        items: Sequence[PlanningItem],
        constraints: PlanningConstraints,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> Plan:
        plan = Plan(
            strategy="constraint_satisfaction",
            budget=constraints.weekly_budget,
            confidence=STRATEGY_CONFIDENCE["constraint_satisfaction"],
        )
        style = constraints.learning_style or user_model.profile.learning_style
        levels = _skill_levels(user_model)
        limit = constraints.sessions_per_week * WEEKS_PER_PLAN
        elapsed = 0.0
        for item in self.prioritize(user_model, items):
            session = self._build_session(item, levels, style, knowledge_base)
            hard = (
                session.duration <= constraints.time_available
                and elapsed + session.duration <= plan.budget
                and self._prerequisites_ready(session, levels, items)
            )
            if hard:
                checks = (
                    self._difficulty_matches(session, levels),
                    self._is_engaging(session, levels, style),
                    self._balances_styles(session, plan.sessions, style),
                )
                session.soft_score = sum(1 for ok in checks if ok) / len(checks)
                if session.soft_score >= SOFT_SCORE_THRESHOLD:
                    plan.sessions.append(session)
                    elapsed += session.duration
                    for skill_id in session.skills:
                        if skill_id in levels:
                            levels[skill_id] = clamp(levels[skill_id] + SIMULATED_GAIN)
            if len(plan.sessions) >= limit:
                break
        plan.expected_outcomes = self.predict_outcomes(plan.sessions, user_model)
        return plan

    # ------------------------------------------------------------------
    def prioritize(self, user_model: UserModel, items: Sequence[PlanningItem]) -> List[PlanningItem]:
        weaknesses = set(user_model.weaknesses)

        def priority(item: PlanningItem) -> float:
            score = 0.0
            if weaknesses.intersection(item.skills):
                score += 10
            score += (1 - abs(item.difficulty - user_model.overall_ability * 5) / 5) * 5
            if user_model.learning_velocity < 0:
                score += 3
            return score

        return sorted(items, key=priority, reverse=True)

    # ------------------------------------------------------------------
    def _build_session(
        self,
        item: PlanningItem,
        levels: Mapping[str, float],
        style: str,
        knowledge_base: Optional[KnowledgeBase],
    ) -> Session:
        skill = _mean_level(item.skills, levels, 0.5)
        return Session(
            topic_id=item.id,
            name=item.name,
            activities=session_activities(item.name, style, item.difficulty - ideal_difficulty(skill)),
            prerequisites=self._prerequisites_for(item, knowledge_base),
            objectives=list(item.objectives) or default_objectives(item.name),
            duration=adjusted_duration(item, skill),
            difficulty=item.difficulty,
            skills=list(item.skills),
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _prerequisites_for(
        item: PlanningItem,
        knowledge_base: Optional[KnowledgeBase],
    ) -> List[str]:
        found = list(item.prerequisites)
        if knowledge_base is not None:
            for rel in knowledge_base.relationships:
                if rel.type == "prerequisite" and rel.target == item.id and rel.source not in found:
                    found.append(rel.source)
        return found

    # ------------------------------------------------------------------
    def _prerequisites_ready(
        self, session: Session, levels: Mapping[str, float], items: Sequence[PlanningItem]
    ) -> bool:
        by_id = {item.id: item for item in items}
        for prereq in session.prerequisites:
            item = by_id.get(prereq)
            skills: Sequence[str] = ()
            if item is not None:
                skills = item.skills
            elif self.curriculum is not None and prereq in self.curriculum:
                skills = self.curriculum.get_topic(prereq).skills
            if skills:
                level = _mean_level(skills, levels, 0.0)
            else:
                level = levels.get(prereq, 0.0)
            if level < PREREQUISITE_PLANNING_MASTERY:
                return False
        return True

    # ------------------------------------------------------------------
    @staticmethod
    def _difficulty_matches(session: Session, levels: Mapping[str, float]) -> bool:
        return abs(difficulty_stretch(session.difficulty, session.skills, levels)) <= 1

    @staticmethod
    def _is_engaging(session: Session, levels: Mapping[str, float], style: str) -> bool:
        """The learner's own style activity is present and the session is neither far too hard nor too easy."""

        style_type = _STYLE_ACTIVITIES.get(style, ("", ""))[0]
        if not any(activity["type"] == style_type for activity in session.activities):
            return False
        return abs(difficulty_stretch(session.difficulty, session.skills, levels)) <= ENGAGING_STRETCH

    @staticmethod
    def _balances_styles(session: Session, accepted: Sequence[Session], style: str) -> bool:
        """Activity minutes across the accepted sessions plus ``session`` stay mixed.

        The learner's style activity must hold at least ``MIN_STYLE_SHARE`` of
        the minutes and no single activity type more than ``MAX_ACTIVITY_SHARE``.
        """

        minutes: Dict[str, float] = {}
        for planned in [*accepted, session]:
            for activity in planned.activities:
                minutes[activity["type"]] = minutes.get(activity["type"], 0.0) + activity["duration"]
        total = sum(minutes.values())
        if total <= 0:
            return False
        style_type = _STYLE_ACTIVITIES.get(style, ("", ""))[0]
        if minutes.get(style_type, 0.0) / total < MIN_STYLE_SHARE:
            return False
        return max(minutes.values()) / total <= MAX_ACTIVITY_SHARE

    # ------------------------------------------------------------------
    @staticmethod
    def predict_outcomes(sessions: Sequence[Session], user_model: UserModel) -> List[Dict[str, Any]]:
        outcomes: List[Dict[str, Any]] = []
        cumulative = user_model.overall_ability
        for index, session in enumerate(sessions, start=1):
            improvement = predict_session_improvement(session, cumulative)
            outcomes.append(
                {
                    "session": index,
                    "topic_id": session.topic_id,
                    "expected_improvement": improvement,
                    "confidence": OUTCOME_CONFIDENCE,
                }
            )
            cumulative += improvement * 0.1
        return outcomes

    # ------------------------------------------------------------------
    @staticmethod
    def score_plan(plan: Plan, user_model: UserModel) -> float:
        """10 x mean improvement + 5 x unused budget share + 3 x confidence + 4 x weakness coverage."""

        improvements = [outcome["expected_improvement"] for outcome in plan.expected_outcomes]
        mean_improvement = sum(improvements) / len(improvements) if improvements else 0.0
        utilization = plan.total_time / plan.budget if plan.budget > 0 else 1.0
        weaknesses = set(user_model.weaknesses)
        if plan.sessions:
            covered = sum(1 for session in plan.sessions if weaknesses.intersection(session.skills))
            coverage = covered / len(plan.sessions)
        else:
            coverage = 0.0
        return 10 * mean_improvement + 5 * (1 - utilization) + 3 * plan.confidence + 4 * coverage

    # ------------------------------------------------------------------
    def select_optimal_plan(
        self,
        plans: Sequence[Plan],
        user_model: UserModel,
    ) -> Plan:
        if not plans:
            raise ValueError("select_optimal_plan requires at least one candidate plan")
        best: Optional[Plan] = None
        best_score = -math.inf
        for plan in plans:
            plan.score = self.score_plan(plan, user_model)
            plan.transition(PlanStatus.SCORED)
            if plan.score > best_score:
                best, best_score = plan, plan.score
        for plan in plans:
            plan.transition(PlanStatus.SELECTED if plan is best else PlanStatus.DISCARDED)
        return best

    # ------------------------------------------------------------------
    @staticmethod
    def adaptive_elements(plan: Plan, user_model: UserModel) -> Dict[str, Any]:
        return {
            "progress_monitoring": {
                "checkpoints": [
                    {"after_session": index, "assessment": "quick_quiz", "adjustment_trigger": "score_below_70"}
                    for index in range(1, len(plan.sessions) + 1)
                ],
            },
            "difficulty_adjustment": {
                "increase_threshold": 0.8,
                "decrease_threshold": 0.6,
                "max_adjustment": 1,
            },
            "content_personalization": {
                "learning_style_adaptation": True,
                "pace_adjustment": True,
                "reinforcement_frequency": "standard" if user_model.learning_velocity > 0 else "increased",
            },
            "motivational_elements": {
                "streak_rewards": True,
                "milestone_celebrations": True,
                "progress_visualization": True,
            },
        }


def session_activities(name: str, style: str, stretch: int = 0) -> List[Dict[str, Any]]:
    """Activity blocks for one session.

    ``stretch`` is the difficulty distance from the learner's ideal level: a
    session two or more levels too hard opens with a prerequisite review, one
    two or more levels too easy skips the introductory reading.
    """

    activities: List[Dict[str, Any]] = []
    if stretch >= ENGAGING_STRETCH:
        activities.append(
            {"type": "review", "duration": 10, "description": f"Review prerequisite material for {name}"}
        )
    if stretch > -ENGAGING_STRETCH:
        activities.append({"type": "reading", "duration": 15, "description": f"Read and understand {name}"})
    activities.append({"type": "practice", "duration": 20, "description": f"Practice exercises for {name}"})
    style_activity = _STYLE_ACTIVITIES.get(style)
    if style_activity:
        activity_type, template = style_activity
        activities.append({"type": activity_type, "duration": 10, "description": template.format(name=name)})
    activities.append(
        {"type": "assessment", "duration": 5, "description": f"Quick quiz to check understanding of {name}"}
    )
    return activities


def default_objectives(name: str) -> List[str]:
    return [
        f"Understand the fundamental principles of {name}",
        f"Apply {name} to solve related problems",
        f"Explain {name} in your own words",
        f"Identify real-world applications of {name}",
    ]


def _skill_levels(user_model: UserModel) -> Dict[str, float]:
    return {skill_id: state.current for skill_id, state in user_model.skills.items()}


def _mean_level(skill_ids: Iterable[str], levels: Mapping[str, float], default: float) -> float:
    values = [levels.get(skill_id, default) for skill_id in skill_ids]
    return sum(values) / len(values) if values else default


def _apply_reasoner_order(items: List[PlanningItem], knowledge_base: KnowledgeBase) -> List[PlanningItem]:
    order = knowledge_base.optimized_order()
    if not order:
        return items
    rank = {concept_id: index for index, concept_id in enumerate(order)}
    return sorted(items, key=lambda item: rank.get(item.id, len(rank)))


def _coerce_constraints(
    constraints: Optional[Union[PlanningConstraints, Mapping[str, Any]]],
) -> PlanningConstraints:
    if constraints is None:
        return PlanningConstraints()
    if isinstance(constraints, PlanningConstraints):
        return constraints
    return PlanningConstraints.model_validate(constraints)


__all__ = [
    "LearningPathPlanner",
    "Plan",
    "PlanStateError",
    "PlanStatus",
    "PlanningItem",
    "Session",
    "adjusted_duration",
    "default_objectives",
    "difficulty_stretch",
    "ideal_difficulty",
    "predict_session_improvement",
    "session_activities",
]
