"""Curriculum-level path generation over the prerequisite graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Dict, List, Optional, Sequence, Tuple

from curriculum import CurriculumGraph, Topic
from user_model import UserModel

logger = logging.getLogger(__name__)

PREREQUISITE_MASTERY = 0.7
TOPIC_MASTERY = 0.8
GAP_THRESHOLD = 0.6
GAP_REQUIRED_LEVEL = 0.8


@dataclass
class TopicSkillGap:
    skill_id: str
    current: float
    required: float
    topic_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "current": self.current,
            "required": self.required,
            "topic_id": self.topic_id,
        }


@dataclass
class CurriculumPath:
    """Ordered topic selection with its time estimate."""

    topics: List[Topic] = field(default_factory=list)
    estimated_minutes: float = 0.0
    skill_gaps: List[TopicSkillGap] = field(default_factory=list)
    reasoning: List[str] = field(default_factory=list)

    @property
    def topic_ids(self) -> List[str]:
        return [topic.id for topic in self.topics]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": self.topic_ids,
            "estimated_minutes": self.estimated_minutes,
            "skill_gaps": [gap.to_dict() for gap in self.skill_gaps],
            "reasoning": " ".join(self.reasoning),
        }


class CurriculumPlanner:
    """Readiness checks, ordering and time-boxing of curriculum topics."""

    def __init__(self, graph: CurriculumGraph) -> None:
        self.graph = graph

    # ------------------------------------------------------------------
    @staticmethod
    def _all_at_least(skill_ids: Sequence[str], user_model: UserModel, threshold: float) -> bool:
        return all(user_model.skill_level(skill_id) >= threshold for skill_id in skill_ids)

    # ------------------------------------------------------------------
    def is_topic_mastered(self, topic: Topic, user_model: UserModel) -> bool:
        return self._all_at_least(topic.skills, user_model, TOPIC_MASTERY)

    # ------------------------------------------------------------------
    def is_topic_suitable(self, topic: Topic, user_model: UserModel) -> bool:
        """Ready to study: prerequisites at 0.7+ and the topic itself not mastered."""

        for prereq_id in topic.prerequisites:
            prereq = self.graph.get_topic(prereq_id)
            if prereq is None:
                continue
            if not self._all_at_least(prereq.skills, user_model, PREREQUISITE_MASTERY):
                return False
        return not self.is_topic_mastered(topic, user_model)

    # ------------------------------------------------------------------
    def sort_topics_by_optimal_order(self, topic_ids: Sequence[str], user_model: UserModel) -> List[str]:
        """Easier topics first when difficulty differs by more than one level,
        otherwise stronger average skill first. Ties keep their input order.
        Unknown topic ids are dropped.
        """

        known = [topic_id for topic_id in topic_ids if topic_id in self.graph]
        levels = {
            topic_id: user_model.average_level(self.graph.get_topic(topic_id).skills)
            for topic_id in known
        }

        def compare(a: str, b: str) -> int:
            diff = self.graph.get_topic(a).difficulty - self.graph.get_topic(b).difficulty
            if abs(diff) > 1:
                return diff
            delta = levels[b] - levels[a]
            if delta > 0:
                return 1
            if delta < 0:
                return -1
            return 0

        return sorted(known, key=cmp_to_key(compare))

    # ------------------------------------------------------------------
    def optimize_for_time(self, topics: Sequence[Topic], budget: float) -> CurriculumPath:
        """Greedy pick by importance per minute while the running total fits ``budget``."""

        ranked = sorted(
            topics,
            key=lambda topic: self.graph.importance(topic) / topic.estimated_minutes,
            reverse=True,
        )
        selected: List[Topic] = []
        total = 0.0
        for topic in ranked:
            if total + topic.estimated_minutes <= budget:
                selected.append(topic)
                total += topic.estimated_minutes
        return CurriculumPath(topics=selected, estimated_minutes=total)

    def _trim_to_budget(self, topics: Sequence[Topic], budget: float) -> Tuple[List[Topic], float]:
        """Keep the :meth:`optimize_for_time` pick, in the order ``topics`` arrived in."""

        kept = {topic.id for topic in self.optimize_for_time(topics, budget).topics}
        trimmed = [topic for topic in topics if topic.id in kept]
        return trimmed, sum(topic.estimated_minutes for topic in trimmed)

    # ------------------------------------------------------------------
    def identify_skill_gaps(self, topic_ids: Sequence[str], user_model: UserModel) -> List[TopicSkillGap]:
        gaps: List[TopicSkillGap] = []
        for topic_id in topic_ids:
            topic = self.graph.get_topic(topic_id)
            if topic is None:
                continue
            for skill_id in topic.skills:
                level = user_model.skill_level(skill_id)
                if level < GAP_THRESHOLD:
                    gaps.append(
                        TopicSkillGap(skill_id=skill_id, current=level, required=GAP_REQUIRED_LEVEL, topic_id=topic_id)
                    )
        return gaps

    # ------------------------------------------------------------------
    def generate_path_to_goal(self, user_model: UserModel, goal_topic: str, available_minutes: float) -> CurriculumPath:
        goal = self.graph.get_topic(goal_topic)
        if goal is None:
            logger.warning("Unknown goal topic %s; returning empty path", goal_topic)
            return CurriculumPath()

        pending = [
            topic_id
            for topic_id in self.graph.get_all_prerequisites(goal_topic)
            if topic_id in self.graph and not self.is_topic_mastered(self.graph.get_topic(topic_id), user_model)
        ]
        if not self.is_topic_mastered(goal, user_model):
            pending.append(goal_topic)

        ordered = self.sort_topics_by_optimal_order(pending, user_model)
        topics = [self.graph.get_topic(topic_id) for topic_id in ordered]
        path = CurriculumPath(
            topics=topics,
            estimated_minutes=sum(topic.estimated_minutes for topic in topics),
            skill_gaps=self.identify_skill_gaps(ordered, user_model),
        )
        if path.estimated_minutes > available_minutes:
            path.topics, path.estimated_minutes = self._trim_to_budget(path.topics, available_minutes)
        return path

    # ------------------------------------------------------------------
    def generate_recommended_path(self, user_model: UserModel, available_minutes: float) -> CurriculumPath:
        candidates: List[str] = []
        reasoning: List[str] = []
        if user_model.weaknesses:
            candidates.extend(self.graph.topics_for_skills(user_model.weaknesses)[:2])
            reasoning.append("Focusing on strengthening weak areas first.")
        if user_model.strengths and len(candidates) < 3:
            candidates.extend(self.graph.advanced_topics_for_skills(user_model.strengths)[:2])
            reasoning.append("Building on existing strengths.")
        if len(user_model.activity_log) < 5:
            candidates.extend(self.graph.foundational_topics()[:1])
            reasoning.append("Starting with fundamental concepts.")

        unique = list(dict.fromkeys(candidates))
        ordered = self.sort_topics_by_optimal_order(unique, user_model)
        topics = [self.graph.get_topic(topic_id) for topic_id in ordered]
        total = sum(topic.estimated_minutes for topic in topics)
        if total > available_minutes:
            topics, total = self._trim_to_budget(topics, available_minutes)
        return CurriculumPath(topics=topics, estimated_minutes=total, reasoning=reasoning)

    # ------------------------------------------------------------------
    def topic_priority(self, topic: Topic, user_model: UserModel) -> float:
        priority = 0.0
        weaknesses = set(user_model.weaknesses)
        strengths = set(user_model.strengths)
        if weaknesses.intersection(topic.skills):
            priority += 50
        if strengths.intersection(topic.skills):
            priority += 25
        if topic.difficulty > 4 and user_model.overall_ability < 0.6:
            priority -= 20
        match = 1 - abs(topic.difficulty - user_model.profile.preferred_difficulty) / 5
        priority += match * 10
        return priority

    # ------------------------------------------------------------------
    def next_recommended_topic(self, user_model: UserModel, current_topic: Optional[str] = None) -> Optional[Topic]:
        if current_topic:
            for topic_id in self.graph.dependents(current_topic):
                topic = self.graph.get_topic(topic_id)
                if topic is not None and self.is_topic_suitable(topic, user_model):
                    return topic

        suitable = [topic for topic in self.graph if self.is_topic_suitable(topic, user_model)]
        if not suitable:
            return None
        suitable.sort(key=lambda topic: self.topic_priority(topic, user_model), reverse=True)
        return suitable[0]


__all__ = ["CurriculumPath", "CurriculumPlanner", "TopicSkillGap"]
