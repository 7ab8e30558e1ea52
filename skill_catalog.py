"""Registered skill catalog: the only skill ids a learner model may track."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import yaml


class SkillCatalogError(ValueError):
    """Raised when a skill catalog definition contains invalid data."""


class UnknownSkillError(KeyError):
    """Raised by :meth:`SkillCatalog.require` for ids outside the catalog."""


DEFAULT_SKILL_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "math": ("arithmetic", "algebra", "geometry", "calculus", "logic"),
    "science": (
        "physics",
        "chemistry",
        "biology",
        "experimental_design",
        "atomic_structure",
        "periodic_table",
        "chemical_bonding",
        "electron_configuration",
        "organic_compounds",
        "functional_groups",
    ),
    "biology": ("cell_structure", "cell_function", "organelles", "genetics", "inheritance"),
    "language": ("grammar", "vocabulary", "reading_comprehension", "writing"),
    "logic": ("deductive", "inductive", "analogical", "causal", "classification", "probability"),
    "spatial": ("visualization", "rotation", "patterns", "maps"),
    "memory": ("short_term", "long_term", "working_memory", "recall"),
    "reading": ("phonics", "fluency", "comprehension", "vocabulary"),
}


@dataclass(frozen=True)
class SkillDefinition:
    """A validated ``category.name`` skill entry."""

    skill_id: str
    category: str
    name: str

    @classmethod
    def parse(cls, skill_id: str) -> "SkillDefinition":
        text = str(skill_id).strip()
        category, sep, name = text.partition(".")
        if not sep or not category or not name:
            raise SkillCatalogError(f"Skill id must look like 'category.name', got {skill_id!r}")
        return cls(skill_id=text, category=category, name=name)


class SkillCatalog:
    """Immutable lookup of every skill id known to the engine."""

    def __init__(self, categories: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        source = DEFAULT_SKILL_CATEGORIES if categories is None else categories
        skills: Dict[str, SkillDefinition] = {}
        for category, names in source.items():
            category_key = str(category).strip()
            if not category_key:
                raise SkillCatalogError("Skill categories may not be empty strings")
            if isinstance(names, (str, bytes)):
                raise SkillCatalogError(f"Category {category_key} must list skill names")
            for name in names:
                definition = SkillDefinition.parse(f"{category_key}.{str(name).strip()}")
                if definition.skill_id in skills:
                    raise SkillCatalogError(f"Duplicate skill id detected: {definition.skill_id}")
                skills[definition.skill_id] = definition
        if not skills:
            raise SkillCatalogError("Skill catalog may not be empty")
        self._skills = skills

    # ------------------------------------------------------------------
    @classmethod
    def from_file(cls, path: str | Path) -> "SkillCatalog":
        """Load ``{category: [skill, ...]}`` from a JSON or YAML file."""

        resolved = Path(path)
        if not resolved.exists():
            raise FileNotFoundError(f"Skill catalog file not found: {resolved}")
        text = resolved.read_text(encoding="utf-8")
        suffix = resolved.suffix.lower()
        if suffix in {".yml", ".yaml"}:
            raw: Any = yaml.safe_load(text)
        elif suffix == ".json":
            raw = json.loads(text)
        else:
            raise SkillCatalogError(f"Unsupported skill catalog format: {resolved}")
        if not isinstance(raw, Mapping):
            raise SkillCatalogError("Skill catalog file must contain a mapping of categories")
        return cls(raw)

    # ------------------------------------------------------------------
    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills

    def __iter__(self) -> Iterator[str]:
        return iter(self._skills)

    def __len__(self) -> int:
        return len(self._skills)

    def skill_ids(self) -> List[str]:
        return list(self._skills)

    def get(self, skill_id: str) -> Optional[SkillDefinition]:
        return self._skills.get(skill_id)

    def require(self, skill_id: str) -> SkillDefinition:
        definition = self._skills.get(skill_id)
        if definition is None:
            raise UnknownSkillError(skill_id)
        return definition

    def categories(self) -> List[str]:
        seen: List[str] = []
        for definition in self._skills.values():
            if definition.category not in seen:
                seen.append(definition.category)
        return seen

    def peers(self, skill_id: str) -> List[str]:
        """Other skills in the same category as ``skill_id``."""

        definition = self._skills.get(skill_id)
        if definition is None:
            return []
        return [
            other.skill_id
            for other in self._skills.values()
            if other.category == definition.category and other.skill_id != skill_id
        ]

    def filter_known(self, skill_ids: Sequence[str]) -> Tuple[List[str], List[str]]:
        """Split ``skill_ids`` into ``(known, unknown)`` preserving order."""

        known: List[str] = []
        unknown: List[str] = []
        for skill_id in skill_ids:
            (known if skill_id in self._skills else unknown).append(skill_id)
        return known, unknown


DEFAULT_CATALOG = SkillCatalog()


__all__ = [
    "DEFAULT_CATALOG",
    "DEFAULT_SKILL_CATEGORIES",
    "SkillCatalog",
    "SkillCatalogError",
    "SkillDefinition",
    "UnknownSkillError",
]
