"""Forward-chaining reasoning over a per-request knowledge base of concepts."""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from curriculum import CurriculumGraph
from schemas import ConceptContent, TopicContent, parse_content
from user_model import UserModel

logger = logging.getLogger(__name__)

PREREQUISITE_WEIGHT = 1.0
RELATED_WEIGHT = 0.7
DOMAIN_RELATED_WEIGHT = 0.4
DIFFICULTY_RELATED_WEIGHT = 0.3
DIFFICULTY_TOLERANCE = 1.5
PREREQUISITE_SATISFIED = 0.7
HISTORY_LIMIT = 50
MAX_RELEVANT = 5

_QUESTION_WORDS = ("what", "who", "where", "when", "why", "how")
_TECHNICAL_TERMS = {"atom", "cell", "force", "energy", "system", "process", "theory", "law"}
_TOKEN_RE = re.compile(r"[A-Za-z0-9_]+")


@dataclass
class Concept:
    id: str
    name: str
    definition: str = ""
    difficulty: int = 3
    domain: str = "general"
    prerequisites: List[str] = field(default_factory=list)
    related: List[str] = field(default_factory=list)
    skills: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "definition": self.definition,
            "difficulty": self.difficulty,
            "domain": self.domain,
            "prerequisites": list(self.prerequisites),
            "related": list(self.related),
            "skills": list(self.skills),
        }


@dataclass
class Relationship:
    type: str
    source: str
    target: str
    strength: float
    inferred: bool = False
    reason: Optional[str] = None

    def touches(self, concept_id: str) -> bool:
        return self.source == concept_id or self.target == concept_id

    def other(self, concept_id: str) -> str:
        return self.target if self.source == concept_id else self.source

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "source": self.source,
            "target": self.target,
            "strength": self.strength,
            "inferred": self.inferred,
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload


@dataclass
class Inference:
    rule: str
    result: Dict[str, Any]
    concept: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule, "concept": self.concept, "result": self.result, "timestamp": self.timestamp}


@dataclass
class KnowledgeBase:
    """Concepts, typed edges and derived facts for one reasoning request."""

    concepts: Dict[str, Concept] = field(default_factory=dict)
    relationships: List[Relationship] = field(default_factory=list)
    inferences: List[Inference] = field(default_factory=list)
    skill_levels: Dict[str, float] = field(default_factory=dict)

    # ------------------------------------------------------------------
    def concept_mastery(self, concept_id: str, default: float) -> float:
        """Mean level of the concept's skills, else the skill sharing its id."""

        concept = self.concepts.get(concept_id)
        if concept is not None:
            levels = [self.skill_levels[skill] for skill in concept.skills if skill in self.skill_levels]
            if levels:
                return sum(levels) / len(levels)
        return self.skill_levels.get(concept_id, default)

    # ------------------------------------------------------------------
    def has_structural_edge(self, a: str, b: str) -> bool:
        for rel in self.relationships:
            if rel.type == "difficulty_related":
                continue
            if (rel.source == a and rel.target == b) or (rel.source == b and rel.target == a):
                return True
        return False

    # ------------------------------------------------------------------
    def relationships_of(self, concept_id: str) -> List[Relationship]:
        return [rel for rel in self.relationships if rel.touches(concept_id)]

    # ------------------------------------------------------------------
    def inferences_for(self, rule: str) -> List[Inference]:
        return [inference for inference in self.inferences if inference.rule == rule]

    # ------------------------------------------------------------------
    def optimized_order(self) -> Optional[List[str]]:
        found = self.inferences_for("learning_path_optimization")
        if not found:
            return None
        return list(found[-1].result.get("optimized_path", []))

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "concepts": {cid: concept.to_dict() for cid, concept in self.concepts.items()},
            "relationships": [rel.to_dict() for rel in self.relationships],
            "inferences": [inference.to_dict() for inference in self.inferences],
        }


@dataclass(frozen=True)
class InferenceRule:
    """(condition, action) pair. Collection rules see every concept at once."""

    name: str
    condition: Callable[..., bool]
    action: Callable[..., Optional[Dict[str, Any]]]
    over_collection: bool = False


@dataclass
class ReasoningResult:
    query: str
    question_type: str
    entities: List[str]
    relevant: List[Dict[str, Any]]
    inferences: List[Dict[str, Any]]
    conclusion: Dict[str, Any]
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "question_type": self.question_type,
            "entities": list(self.entities),
            "relevant": list(self.relevant),
            "inferences": list(self.inferences),
            "conclusion": dict(self.conclusion),
            "confidence": self.confidence,
        }


def calculate_reasoning_confidence(inferences: Sequence[Mapping[str, Any]]) -> float:
    """Mean inference confidence plus 0.1 per inference, capped at 0.95."""

    if not inferences:
        return 0.3
    mean = sum(float(item["confidence"]) for item in inferences) / len(inferences)
    return min(0.95, mean + 0.1 * len(inferences))


def identify_question_type(query: str) -> str:
    lower = query.strip().lower()
    first = lower.split(" ", 1)[0] if lower else ""
    for word in _QUESTION_WORDS:
        if first.startswith(word):
            return word
    if "explain" in lower or "describe" in lower:
        return "explanation"
    if "compare" in lower or "difference" in lower:
        return "comparison"
    if "example" in lower or "instance" in lower:
        return "example"
    return "general"


def extract_query_entities(query: str) -> List[str]:
    entities: List[str] = []
    for word in _TOKEN_RE.findall(query):
        lowered = word.lower()
        if len(word) > 3 and (word[0].isupper() or lowered in _TECHNICAL_TERMS):
            if lowered not in entities:
                entities.append(lowered)
    return entities


class KnowledgeReasoner:
    """Builds knowledge bases and answers ad-hoc reasoning queries."""

    def __init__(self, curriculum: Optional[CurriculumGraph] = None, *, history_limit: int = HISTORY_LIMIT) -> None:
        self.curriculum = curriculum
        self.rules: List[InferenceRule] = [
            InferenceRule("prerequisite_inference", self._has_prerequisites, self._infer_prerequisites),
            InferenceRule("difficulty_progression", self._needs_difficulty_adjustment, self._adjust_difficulty),
            InferenceRule("concept_relationships", self._has_domain_peers, self._infer_domain_relationships),
            InferenceRule(
                "learning_path_optimization",
                self._can_optimize_path,
                self._optimize_learning_path,
                over_collection=True,
            ),
        ]
        self._history: Deque[ReasoningResult] = deque(maxlen=history_limit)

    @property
    def history(self) -> List[ReasoningResult]:
        return list(self._history)

    # ------------------------------------------------------------------
    def build_knowledge_base(
        self,
        content: Iterable[Union[TopicContent, ConceptContent, Mapping[str, Any]]],
        user_state: Optional[Union[UserModel, Mapping[str, float]]] = None,
    ) -> KnowledgeBase:
        """Validate ``content``, extract concepts and base edges, then run every rule.

        Raises ``pydantic.ValidationError`` for untagged or malformed descriptors.
        """

        descriptors = parse_content(content)
        kb = KnowledgeBase(skill_levels=_skill_snapshot(user_state))
        for descriptor in descriptors:
            concept = self._to_concept(descriptor)
            if concept is None:
                continue
            if concept.id in kb.concepts:
                logger.debug("Duplicate concept %s ignored", concept.id)
                continue
            kb.concepts[concept.id] = concept
        kb.relationships = self._base_relationships(kb.concepts)
        kb.inferences = self.apply_inference_rules(kb)
        return kb

    # ------------------------------------------------------------------
    def _to_concept(self, descriptor: Union[TopicContent, ConceptContent]) -> Optional[Concept]:
        if isinstance(descriptor, ConceptContent):
            return Concept(
                id=descriptor.id,
                name=descriptor.name,
                definition=descriptor.definition,
                difficulty=descriptor.difficulty,
                domain=descriptor.domain,
                prerequisites=list(descriptor.prerequisites),
                related=list(descriptor.related),
                skills=list(descriptor.skills),
            )
        topic = self.curriculum.get_topic(descriptor.topic_id) if self.curriculum else None
        if topic is None:
            logger.warning("Content references unknown topic %s; skipping", descriptor.topic_id)
            return None
        domain = descriptor.domain
        if not domain:
            domain = topic.skills[0].split(".", 1)[0] if topic.skills else "general"
        return Concept(
            id=topic.id,
            name=topic.name,
            definition=descriptor.definition or " ".join(topic.objectives),
            difficulty=topic.difficulty,
            domain=domain,
            prerequisites=list(topic.prerequisites),
            related=list(descriptor.related),
            skills=list(topic.skills),
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _base_relationships(concepts: Mapping[str, Concept]) -> List[Relationship]:
        relationships: List[Relationship] = []
        for concept_id, concept in concepts.items():
            for prereq in concept.prerequisites:
                relationships.append(Relationship("prerequisite", prereq, concept_id, PREREQUISITE_WEIGHT))
            for related in concept.related:
                relationships.append(Relationship("related", concept_id, related, RELATED_WEIGHT))
        ordered = list(concepts.values())
        for previous, current in zip(ordered, ordered[1:]):
            if abs(previous.difficulty - current.difficulty) <= 1:
                relationships.append(
                    Relationship("difficulty_related", previous.id, current.id, DIFFICULTY_RELATED_WEIGHT)
                )
        return relationships

    # ------------------------------------------------------------------
    def apply_inference_rules(self, kb: KnowledgeBase) -> List[Inference]:
        inferences: List[Inference] = []
        concepts = list(kb.concepts.values())
        for rule in self.rules:
            if rule.over_collection:
                if rule.condition(concepts, kb):
                    result = rule.action(concepts, kb)
                    if result:
                        inferences.append(Inference(rule=rule.name, result=result))
                continue
            for concept in concepts:
                if rule.condition(concept, kb):
                    result = rule.action(concept, kb)
                    if result:
                        inferences.append(Inference(rule=rule.name, concept=concept.id, result=result))
        return inferences

    # ------------------------------------------------------------------
    @staticmethod
    def _has_prerequisites(concept: Concept, kb: KnowledgeBase) -> bool:
        return bool(concept.prerequisites)

    @staticmethod
    def _infer_prerequisites(concept: Concept, kb: KnowledgeBase) -> Optional[Dict[str, Any]]:
        chain: List[Dict[str, str]] = []
        visited: Set[str] = set()
        stack: List[Concept] = [concept]
        while stack:
            current = stack.pop()
            if current.id in visited:
                continue
            visited.add(current.id)
            for prereq_id in current.prerequisites:
                prereq = kb.concepts.get(prereq_id)
                if prereq is None:
                    continue
                chain.append({"concept": prereq_id, "relationship": "prerequisite_for", "target": current.id})
                stack.append(prereq)
        if not chain:
            return None
        return {"type": "prerequisite_chain", "chain": chain}

    # ------------------------------------------------------------------
    @staticmethod
    def _needs_difficulty_adjustment(concept: Concept, kb: KnowledgeBase) -> bool:
        skill = kb.concept_mastery(concept.id, 0.5)
        return abs(concept.difficulty - skill * 5) > DIFFICULTY_TOLERANCE

    @staticmethod
    def _adjust_difficulty(concept: Concept, kb: KnowledgeBase) -> Dict[str, Any]:
        skill = kb.concept_mastery(concept.id, 0.5)
        recommended = max(1, min(5, int(skill * 5) + 1))
        return {
            "type": "difficulty_adjustment",
            "original_difficulty": concept.difficulty,
            "recommended_difficulty": recommended,
            "reason": f"Adjusted for user skill level ({round(skill * 100)}%)",
        }

    # ------------------------------------------------------------------
    @staticmethod
    def _has_domain_peers(concept: Concept, kb: KnowledgeBase) -> bool:
        return any(other.id != concept.id and other.domain == concept.domain for other in kb.concepts.values())

    @staticmethod
    def _infer_domain_relationships(concept: Concept, kb: KnowledgeBase) -> Optional[Dict[str, Any]]:
        added: List[Dict[str, Any]] = []
        for other in kb.concepts.values():
            if other.id == concept.id or other.domain != concept.domain:
                continue
            if kb.has_structural_edge(concept.id, other.id):
                continue
            edge = Relationship(
                "domain_related",
                concept.id,
                other.id,
                DOMAIN_RELATED_WEIGHT,
                inferred=True,
                reason="Same domain",
            )
            kb.relationships.append(edge)
            added.append(edge.to_dict())
        if not added:
            return None
        return {"type": "domain_relationships", "relationships": added}

    # ------------------------------------------------------------------
    @staticmethod
    def _can_optimize_path(concepts: Sequence[Concept], kb: KnowledgeBase) -> bool:
        return len(concepts) >= 3

    @staticmethod
    def count_unsatisfied_prerequisites(concept: Concept, kb: KnowledgeBase) -> int:
        return sum(1 for prereq in concept.prerequisites if kb.concept_mastery(prereq, 0.0) < PREREQUISITE_SATISFIED)

    def _optimize_learning_path(self, concepts: Sequence[Concept], kb: KnowledgeBase) -> Dict[str, Any]:
        ranked = sorted(concepts, key=lambda concept: self.count_unsatisfied_prerequisites(concept, kb))
        buckets: Dict[int, List[Concept]] = {}
        for concept in ranked:
            level = min(5, max(1, int(concept.difficulty or 3)))
            buckets.setdefault(level, []).append(concept)
        longest = max(len(group) for group in buckets.values())
        interleaved: List[str] = []
        for index in range(longest):
            for level in range(1, 6):
                group = buckets.get(level)
                if group and index < len(group):
                    interleaved.append(group[index].id)
        return {
            "type": "path_optimization",
            "original_path": [concept.id for concept in concepts],
            "optimized_path": interleaved,
        }

    # ------------------------------------------------------------------
    def perform_logical_reasoning(self, query: str, kb: KnowledgeBase) -> ReasoningResult:
        question_type = identify_question_type(query)
        entities = extract_query_entities(query)
        relevant = self.find_relevant_concepts(query, kb)
        inferences = self._apply_reasoning_rules(relevant, kb)
        conclusion = self._generate_conclusion(relevant, inferences)
        result = ReasoningResult(
            query=query,
            question_type=question_type,
            entities=entities,
            relevant=[
                {"concept": item["concept"].id, "score": item["score"], "reasons": item["reasons"]}
                for item in relevant
            ],
            inferences=inferences,
            conclusion=conclusion,
            confidence=calculate_reasoning_confidence(inferences),
        )
        self._history.append(result)
        return result

    # ------------------------------------------------------------------
    @staticmethod
    def find_relevant_concepts(query: str, kb: KnowledgeBase) -> List[Dict[str, Any]]:
        """Score concepts by term overlap: name 3, definition 2, domain 1. Top five."""

        terms = [token.lower() for token in _TOKEN_RE.findall(query) if len(token) >= 3]
        scored: List[Dict[str, Any]] = []
        for concept in kb.concepts.values():
            reasons: List[str] = []
            score = 0
            if any(term in concept.name.lower() for term in terms):
                score += 3
                reasons.append("name_match")
            if any(term in concept.definition.lower() for term in terms):
                score += 2
                reasons.append("definition_match")
            if any(term in concept.domain.lower() for term in terms):
                score += 1
                reasons.append("domain_match")
            if score:
                scored.append({"concept": concept, "score": score, "reasons": reasons})
        scored.sort(key=lambda item: item["score"], reverse=True)
        return scored[:MAX_RELEVANT]

    # ------------------------------------------------------------------
    @staticmethod
    def _apply_reasoning_rules(relevant: Sequence[Mapping[str, Any]], kb: KnowledgeBase) -> List[Dict[str, Any]]:
        inferences: List[Dict[str, Any]] = []
        for item in relevant:
            concept: Concept = item["concept"]
            if concept.prerequisites:
                inferences.append(
                    {
                        "type": "prerequisite_required",
                        "concept": concept.id,
                        "prerequisites": list(concept.prerequisites),
                        "confidence": 0.9,
                    }
                )
            edges = kb.relationships_of(concept.id)
            if edges:
                inferences.append(
                    {
                        "type": "relationships_found",
                        "concept": concept.id,
                        "related": [edge.other(concept.id) for edge in edges],
                        "confidence": 0.8,
                    }
                )
            skill = kb.concept_mastery(concept.id, 0.5)
            mismatch = abs(concept.difficulty - skill * 5)
            if mismatch > 1:
                inferences.append(
                    {
                        "type": "difficulty_mismatch",
                        "concept": concept.id,
                        "user_skill": skill,
                        "concept_difficulty": concept.difficulty,
                        "recommendation": "adjust_difficulty" if mismatch > 2 else "monitor_progress",
                        "confidence": 0.7,
                    }
                )
        return inferences

    # ------------------------------------------------------------------
    @staticmethod
    def _generate_conclusion(
        relevant: Sequence[Mapping[str, Any]],
        inferences: Sequence[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        evidence: List[str] = []
        recommendations: List[str] = []
        answer: Optional[str] = None

        prerequisite = [item for item in inferences if item["type"] == "prerequisite_required"]
        related = [item for item in inferences if item["type"] == "relationships_found"]
        difficulty = [item for item in inferences if item["type"] == "difficulty_mismatch"]

        if prerequisite:
            answer = "To understand this topic, you should first master: " + ", ".join(prerequisite[0]["prerequisites"])
            evidence.append("Prerequisite analysis")
        if related:
            names = list(dict.fromkeys(related[0]["related"]))
            recommendations.append("Related concepts to explore: " + ", ".join(names))
            evidence.append("Relationship mapping")
        if difficulty:
            first = difficulty[0]
            if first["recommendation"] == "adjust_difficulty":
                level = "challenging" if first["concept_difficulty"] > first["user_skill"] * 5 else "too easy"
                recommendations.append(f"This topic may be {level} for your current level.")
            evidence.append("Difficulty assessment")
        if answer is None:
            if relevant:
                answer = "Relevant concepts: " + ", ".join(item["concept"].name for item in relevant)
            else:
                answer = "No matching concepts found."
        return {"answer": answer, "supporting_evidence": evidence, "recommendations": recommendations}


def _skill_snapshot(user_state: Optional[Union[UserModel, Mapping[str, float]]]) -> Dict[str, float]:
    if user_state is None:
        return {}
    if isinstance(user_state, UserModel):
        return {skill_id: state.current for skill_id, state in user_state.skills.items()}
    return {str(key): float(value) for key, value in user_state.items()}


__all__ = [
    "Concept",
    "Inference",
    "InferenceRule",
    "KnowledgeBase",
    "KnowledgeReasoner",
    "ReasoningResult",
    "Relationship",
    "calculate_reasoning_confidence",
    "extract_query_entities",
    "identify_question_type",
]
