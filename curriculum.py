"""Curriculum graph: topics, their prerequisites and required skills."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

import yaml

from skill_catalog import DEFAULT_CATALOG, SkillCatalog

logger = logging.getLogger(__name__)


class CurriculumConfigError(ValueError):
    """Raised when a curriculum definition contains invalid data."""


@dataclass(frozen=True)
class Topic:
    """A unit of study. Immutable once loaded."""

    id: str
    name: str
    prerequisites: Tuple[str, ...] = ()
    skills: Tuple[str, ...] = ()
    difficulty: int = 3
    estimated_minutes: float = 30.0
    objectives: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "prerequisites": list(self.prerequisites),
            "skills": list(self.skills),
            "difficulty": self.difficulty,
            "estimated_minutes": self.estimated_minutes,
            "objectives": list(self.objectives),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Topic":
        topic_id = str(payload.get("id") or "").strip()
        if not topic_id:
            raise CurriculumConfigError("Topic entries require a non-empty 'id'")
        try:
            difficulty = int(payload.get("difficulty", 3))
            minutes = float(payload.get("estimated_minutes", payload.get("estimated_time", 30)))
        except (TypeError, ValueError) as exc:
            raise CurriculumConfigError(f"Topic {topic_id} has non-numeric difficulty or duration") from exc
        if not 1 <= difficulty <= 5:
            raise CurriculumConfigError(f"Topic {topic_id} difficulty must be within 1..5, got {difficulty}")
        if minutes <= 0:
            raise CurriculumConfigError(f"Topic {topic_id} estimated duration must be positive")
        return cls(
            id=topic_id,
            name=str(payload.get("name") or topic_id),
            prerequisites=_unique(payload.get("prerequisites") or ()),
            skills=_unique(payload.get("skills") or ()),
            difficulty=difficulty,
            estimated_minutes=minutes,
            objectives=tuple(str(item) for item in payload.get("objectives") or ()),
        )


@dataclass(frozen=True)
class TopicCluster:
    cluster_id: str
    name: str
    topics: Tuple[str, ...]
    theme: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.cluster_id, "name": self.name, "topics": list(self.topics), "theme": self.theme}


def _unique(values: Iterable[Any]) -> Tuple[str, ...]:
    if isinstance(values, (str, bytes)):
        values = [values]
    seen: List[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


DEFAULT_TOPICS: Tuple[Dict[str, Any], ...] = (
    {
        "id": "atomic_structure",
        "name": "Atomic Structure and the Periodic Table",
        "prerequisites": [],
        "skills": ["science.atomic_structure", "science.periodic_table", "logic.classification"],
        "difficulty": 3,
        "estimated_minutes": 45,
        "objectives": [
            "Understand the structure of atoms",
            "Explain the periodic table organization",
            "Apply atomic concepts to real-world scenarios",
        ],
    },
    {
        "id": "chemical_bonding",
        "name": "Chemical Bonding",
        "prerequisites": ["atomic_structure"],
        "skills": ["science.chemical_bonding", "science.electron_configuration"],
        "difficulty": 4,
        "estimated_minutes": 50,
        "objectives": [
            "Explain different types of chemical bonds",
            "Predict bonding behavior",
            "Understand molecular structure",
        ],
    },
    {
        "id": "organic_chemistry",
        "name": "Organic Chemistry Basics",
        "prerequisites": ["chemical_bonding"],
        "skills": ["science.organic_compounds", "science.functional_groups"],
        "difficulty": 5,
        "estimated_minutes": 60,
        "objectives": [
            "Identify organic compounds",
            "Understand functional groups",
            "Predict reaction mechanisms",
        ],
    },
    {
        "id": "cell_biology",
        "name": "Cell Biology",
        "prerequisites": [],
        "skills": ["biology.cell_structure", "biology.cell_function", "biology.organelles"],
        "difficulty": 3,
        "estimated_minutes": 40,
        "objectives": [
            "Describe cell structure and function",
            "Explain cellular processes",
            "Compare prokaryotic and eukaryotic cells",
        ],
    },
    {
        "id": "genetics",
        "name": "Genetics and Heredity",
        "prerequisites": ["cell_biology"],
        "skills": ["biology.genetics", "biology.inheritance", "logic.probability"],
        "difficulty": 4,
        "estimated_minutes": 55,
        "objectives": [
            "Explain genetic inheritance",
            "Understand DNA and RNA",
            "Apply genetic principles",
        ],
    },
)

DEFAULT_CLUSTERS: Tuple[Dict[str, Any], ...] = (
    {
        "id": "chemistry_fundamentals",
        "name": "Chemistry Fundamentals",
        "topics": ["atomic_structure", "chemical_bonding"],
        "theme": "Building blocks of matter",
    },
    {
        "id": "organic_chemistry",
        "name": "Organic Chemistry",
        "topics": ["organic_chemistry"],
        "theme": "Carbon-based compounds",
    },
    {
        "id": "biology_fundamentals",
        "name": "Biology Fundamentals",
        "topics": ["cell_biology", "genetics"],
        "theme": "Life and inheritance",
    },
)


class CurriculumGraph:
    """Read-only prerequisite graph over curriculum topics."""

    def __init__(
        self,
        topics: Iterable[Topic],
        clusters: Iterable[TopicCluster] = (),
        *,
        catalog: Optional[SkillCatalog] = None,
    ) -> None:
        self.catalog = catalog or DEFAULT_CATALOG
        self._topics: Dict[str, Topic] = {}
        for topic in topics:
            if topic.id in self._topics:
                raise CurriculumConfigError(f"Duplicate topic id detected: {topic.id}")
            unknown = [skill for skill in topic.skills if skill not in self.catalog]
            if unknown:
                raise CurriculumConfigError(
                    f"Topic {topic.id} references unknown skills: {', '.join(unknown)}"
                )
            self._topics[topic.id] = topic
        self._dependents: Dict[str, List[str]] = {topic_id: [] for topic_id in self._topics}
        for topic in self._topics.values():
            for prereq in topic.prerequisites:
                if prereq in self._dependents:
                    self._dependents[prereq].append(topic.id)
        self._clusters: Dict[str, TopicCluster] = {}
        for cluster in clusters:
            missing = [topic_id for topic_id in cluster.topics if topic_id not in self._topics]
            if missing:
                raise CurriculumConfigError(
                    f"Cluster {cluster.cluster_id} references unknown topics: {', '.join(missing)}"
                )
            self._clusters[cluster.cluster_id] = cluster

    # ------------------------------------------------------------------
    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._topics

    def __iter__(self) -> Iterator[Topic]:
        return iter(self._topics.values())

    def __len__(self) -> int:
        return len(self._topics)

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        return self._topics.get(topic_id)

    def topics(self) -> List[Topic]:
        return list(self._topics.values())

    def topic_ids(self) -> List[str]:
        return list(self._topics)

    # ------------------------------------------------------------------
    def dependents(self, topic_id: str) -> List[str]:
        """Topics that list ``topic_id`` as a direct prerequisite."""

        return list(self._dependents.get(topic_id, []))

    # ------------------------------------------------------------------
    def importance(self, topic: Topic) -> float:
        return len(self._dependents.get(topic.id, [])) * 10 + topic.difficulty

    # ------------------------------------------------------------------
    def get_all_prerequisites(self, topic_id: str) -> List[str]:
        """Transitive prerequisites of ``topic_id`` in depth-first discovery order.

        Each topic is expanded at most once, so cyclic definitions terminate.
        Unknown topic ids yield an empty list.
        """

        root = self._topics.get(topic_id)
        if root is None:
            return []
        visited: Set[str] = {topic_id}
        ordered: List[str] = []
        seen: Set[str] = set()
        stack: List[str] = list(reversed(root.prerequisites))
        while stack:
            current = stack.pop()
            if current not in seen and current != topic_id:
                seen.add(current)
                ordered.append(current)
            if current in visited:
                continue
            visited.add(current)
            topic = self._topics.get(current)
            if topic is None:
                continue
            stack.extend(reversed(topic.prerequisites))
        return ordered

    # ------------------------------------------------------------------
    def missing_prerequisites(self) -> Dict[str, List[str]]:
        """Prerequisite ids that do not resolve to a topic, keyed by topic."""

        missing: Dict[str, List[str]] = {}
        for topic in self._topics.values():
            unresolved = [prereq for prereq in topic.prerequisites if prereq not in self._topics]
            if unresolved:
                missing[topic.id] = unresolved
        return missing

    # ------------------------------------------------------------------
    def find_cycles(self) -> List[List[str]]:
        """Return every distinct prerequisite cycle, each as a list of topic ids."""

        cycles: List[List[str]] = []
        signatures: Set[Tuple[str, ...]] = set()
        done: Set[str] = set()
        for start in self._topics:
            if start in done:
                continue
            path: List[str] = [start]
            on_path: Set[str] = {start}
            iterators = [iter(self._topics[start].prerequisites)]
            while iterators:
                advanced = False
                for nxt in iterators[-1]:
                    if nxt not in self._topics:
                        continue
                    if nxt in on_path:
                        cycle = path[path.index(nxt):]
                        pivot = cycle.index(min(cycle))
                        signature = tuple(cycle[pivot:] + cycle[:pivot])
                        if signature not in signatures:
                            signatures.add(signature)
                            cycles.append(list(signature))
                        continue
                    if nxt in done:
                        continue
                    path.append(nxt)
                    on_path.add(nxt)
                    iterators.append(iter(self._topics[nxt].prerequisites))
                    advanced = True
                    break
                if not advanced:
                    iterators.pop()
                    finished = path.pop()
                    on_path.discard(finished)
                    done.add(finished)
        return cycles

    # ------------------------------------------------------------------
    def clusters(self) -> List[TopicCluster]:
        return list(self._clusters.values())

    def cluster_for(self, topic_id: str) -> Optional[TopicCluster]:
        for cluster in self._clusters.values():
            if topic_id in cluster.topics:
                return cluster
        return None

    # ------------------------------------------------------------------
    def topics_for_skills(self, skill_ids: Sequence[str]) -> List[str]:
        wanted = set(skill_ids)
        return [topic.id for topic in self._topics.values() if wanted.intersection(topic.skills)]

    def advanced_topics_for_skills(self, skill_ids: Sequence[str], *, min_difficulty: int = 4) -> List[str]:
        wanted = set(skill_ids)
        return [
            topic.id
            for topic in self._topics.values()
            if topic.difficulty >= min_difficulty and wanted.intersection(topic.skills)
        ]

    def foundational_topics(self) -> List[str]:
        roots = [topic for topic in self._topics.values() if not topic.prerequisites]
        roots.sort(key=lambda topic: topic.difficulty)
        return [topic.id for topic in roots]

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": [topic.to_dict() for topic in self._topics.values()],
            "clusters": [cluster.to_dict() for cluster in self._clusters.values()],
        }

    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, catalog: Optional[SkillCatalog] = None) -> "CurriculumGraph":
        raw_topics = payload.get("topics")
        if isinstance(raw_topics, Mapping):
            raw_topics = [{"id": key, **value} for key, value in raw_topics.items()]
        if not isinstance(raw_topics, list) or not raw_topics:
            raise CurriculumConfigError("Curriculum definition requires a non-empty 'topics' list")
        topics = []
        for entry in raw_topics:
            if not isinstance(entry, Mapping):
                raise CurriculumConfigError("Each topic entry must be a mapping")
            topics.append(Topic.from_dict(entry))
        clusters = []
        for entry in payload.get("clusters") or []:
            if not isinstance(entry, Mapping) or not entry.get("id"):
                raise CurriculumConfigError("Each cluster entry must be a mapping with an 'id'")
            clusters.append(
                TopicCluster(
                    cluster_id=str(entry["id"]),
                    name=str(entry.get("name") or entry["id"]),
                    topics=_unique(entry.get("topics") or ()),
                    theme=str(entry.get("theme") or ""),
                )
            )
        graph = cls(topics, clusters, catalog=catalog)
        missing = graph.missing_prerequisites()
        if missing:
            logger.warning("Curriculum has unresolved prerequisites: %s", missing)
        return graph

    # ------------------------------------------------------------------
    @classmethod
    def from_file(cls, path: str | Path, *, catalog: Optional[SkillCatalog] = None) -> "CurriculumGraph":
        resolved = Path(path)
        if not resolved.exists():
            raise FileNotFoundError(f"Curriculum file not found: {resolved}")
        text = resolved.read_text(encoding="utf-8")
        suffix = resolved.suffix.lower()
        if suffix in {".yml", ".yaml"}:
            payload = yaml.safe_load(text)
        elif suffix == ".json":
            payload = json.loads(text)
        else:
            raise CurriculumConfigError(f"Unsupported curriculum format: {resolved}")
        if not isinstance(payload, Mapping):
            raise CurriculumConfigError("Curriculum file must contain a mapping")
        return cls.from_dict(payload, catalog=catalog)

    # ------------------------------------------------------------------
    @classmethod
    def default(cls, *, catalog: Optional[SkillCatalog] = None) -> "CurriculumGraph":
        return cls.from_dict(
            {"topics": list(DEFAULT_TOPICS), "clusters": list(DEFAULT_CLUSTERS)},
            catalog=catalog,
        )


__all__ = [
    "CurriculumConfigError",
    "CurriculumGraph",
    "DEFAULT_CLUSTERS",
    "DEFAULT_TOPICS",
    "Topic",
    "TopicCluster",
]
