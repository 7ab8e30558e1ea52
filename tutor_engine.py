"""Orchestration facade wiring the store, catalog, curriculum and engines."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from curriculum import CurriculumGraph, Topic
from engines.curriculum_planner import CurriculumPath, CurriculumPlanner
from engines.knowledge_reasoner import KnowledgeBase, KnowledgeReasoner, ReasoningResult
from engines.mastery_tracker import Predictor, SkillMasteryTracker
from engines.path_planner import LearningPathPlanner, Plan
from engines.plan_scheduler import PlanScheduler, StudySchedule
from env_validation import EngineSettings
from predictor import HttpPerformancePredictor
from schemas import ActivityEvent, ConceptContent, PlanningConstraints, SchedulePreferences, TopicContent, parse_content
from skill_catalog import DEFAULT_CATALOG, SkillCatalog
from store import InMemoryStore, SQLiteStore, TutorStore
from user_model import UserModel

logger = logging.getLogger(__name__)

_READ_ERRORS = (sqlite3.Error, OSError, ValueError)


class TutoringEngine:
    """Explicit engine instance; every call for one user id is serialized.

    Curriculum and catalog are loaded once and treated as read-only. Writes to
    the store and predictor calls never roll back in-memory learner state.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        store: Optional[TutorStore] = None,
        catalog: Optional[SkillCatalog] = None,
        curriculum: Optional[CurriculumGraph] = None,
        predictor: Optional[Predictor] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        emit_events = self.settings.structured_logs

        self.catalog = catalog or self._load_catalog()
        self.store = store if store is not None else SQLiteStore(self.settings.db_path, catalog=self.catalog)
        self.curriculum = curriculum or self._load_curriculum()
        if predictor is None and self.settings.predictor_url:
            predictor = HttpPerformancePredictor(
                self.settings.predictor_url,
                timeout=self.settings.predictor_timeout_seconds,
            )
        self.predictor = predictor

        self.tracker = SkillMasteryTracker(self.catalog, predictor, emit_events=emit_events)
        self.curriculum_planner = CurriculumPlanner(self.curriculum)
        self.path_planner = LearningPathPlanner(self.curriculum, emit_events=emit_events)
        self.reasoner = KnowledgeReasoner(self.curriculum)
        self.scheduler = PlanScheduler(emit_events=emit_events)

        self._models: OrderedDict[str, UserModel] = OrderedDict()
        self._models_guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_env(cls, **overrides: Any) -> "TutoringEngine":
        return cls(EngineSettings.from_env(), **overrides)

    @classmethod
    def in_memory(cls, settings: Optional[EngineSettings] = None, **overrides: Any) -> "TutoringEngine":
        catalog = overrides.pop("catalog", None) or DEFAULT_CATALOG
        curriculum = overrides.pop("curriculum", None) or CurriculumGraph.default(catalog=catalog)
        store = InMemoryStore(curriculum.topics(), catalog=catalog)
        return cls(settings, store=store, catalog=catalog, curriculum=curriculum, **overrides)

    # ------------------------------------------------------------------
    def _load_catalog(self) -> SkillCatalog:
        path = self.settings.skill_catalog_path
        if not path:
            return DEFAULT_CATALOG
        catalog = SkillCatalog.from_file(path)
        logger.info("Loaded %d skills from %s", len(catalog), path)
        return catalog

    # ------------------------------------------------------------------
    def _load_curriculum(self) -> CurriculumGraph:
        path = self.settings.curriculum_path
        if path:
            graph = CurriculumGraph.from_file(path, catalog=self.catalog)
            logger.info("Loaded %d topics from %s", len(graph), path)
            return graph

        try:
            stored = self.store.list_topics()
        except _READ_ERRORS:
            logger.exception("Reading curriculum topics from the store failed")
            stored = []
        if stored:
            return CurriculumGraph(stored, catalog=self.catalog)

        graph = CurriculumGraph.default(catalog=self.catalog)
        if isinstance(self.store, SQLiteStore):
            seeded = self.store.save_topics(graph.topics())
            logger.info("Seeded %d default topics into %s", seeded, self.store.db_path)
        return graph

    # ------------------------------------------------------------------
    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def _load_model(self, user_id: str) -> UserModel:
        with self._models_guard:
            cached = self._models.get(user_id)
            if cached is not None:
                self._models.move_to_end(user_id)
                return cached
        try:
            model = self.store.get_user_model(user_id)
        except _READ_ERRORS:
            logger.exception("Loading model for user %s failed; starting from defaults", user_id)
            model = None
        if model is None:
            model = UserModel.create_default(user_id, self.catalog)
        self._cache_model(user_id, model)
        return model

    def _cache_model(self, user_id: str, model: UserModel) -> None:
        """Least recently used models beyond ``model_cache_size`` are dropped and
        reloaded from the store on next use."""

        with self._models_guard:
            self._models[user_id] = model
            self._models.move_to_end(user_id)
            while len(self._models) > self.settings.model_cache_size:
                evicted, _ = self._models.popitem(last=False)
                logger.debug("Evicted cached model for user %s", evicted)

    def _save_model(self, user_id: str, model: UserModel) -> None:
        try:
            saved = self.store.put_user_model(user_id, model)
        except Exception:
            logger.exception("Store rejected model for user %s", user_id)
            return
        if not saved:
            logger.warning("Model for user %s was not persisted; keeping in-memory state", user_id)

    # ------------------------------------------------------------------
    def get_user_model(self, user_id: str) -> UserModel:
        """Stored model for ``user_id``, or a freshly seeded default one."""

        with self._user_lock(user_id):
            return self._load_model(user_id)

    # ------------------------------------------------------------------
    def record_activity(self, user_id: str, event: Union[ActivityEvent, Mapping[str, Any]]) -> UserModel:
        """Apply ``event`` to the learner and persist the result.

        Raises ``pydantic.ValidationError`` for malformed events before any
        state is touched.
        """

        if not isinstance(event, ActivityEvent):
            event = ActivityEvent.model_validate(event)
        with self._user_lock(user_id):
            model = self._load_model(user_id)
            self.tracker.update_from_activity(model, event)
            self._save_model(user_id, model)
            return model

    # ------------------------------------------------------------------
    def recommendations(self, user_id: str) -> List[Dict[str, Any]]:
        with self._user_lock(user_id):
            return self.tracker.recommendations(self._load_model(user_id))

    # ------------------------------------------------------------------
    def next_topic(self, user_id: str, current_topic: Optional[str] = None) -> Optional[Topic]:
        with self._user_lock(user_id):
            return self.curriculum_planner.next_recommended_topic(self._load_model(user_id), current_topic)

    def path_to_goal(self, user_id: str, goal_topic: str, available_minutes: float) -> CurriculumPath:
        with self._user_lock(user_id):
            model = self._load_model(user_id)
            return self.curriculum_planner.generate_path_to_goal(model, goal_topic, available_minutes)

    def recommended_path(self, user_id: str, available_minutes: float) -> CurriculumPath:
        with self._user_lock(user_id):
            model = self._load_model(user_id)
            return self.curriculum_planner.generate_recommended_path(model, available_minutes)

    # ------------------------------------------------------------------
    def build_knowledge_base(
        self,
        user_id: str,
        content: Iterable[Union[TopicContent, ConceptContent, Mapping[str, Any]]],
    ) -> KnowledgeBase:
        with self._user_lock(user_id):
            return self.reasoner.build_knowledge_base(content, self._load_model(user_id))

    def reason(
        self,
        user_id: str,
        query: str,
        content: Iterable[Union[TopicContent, ConceptContent, Mapping[str, Any]]],
    ) -> ReasoningResult:
        kb = self.build_knowledge_base(user_id, content)
        return self.reasoner.perform_logical_reasoning(query, kb)

    # ------------------------------------------------------------------
    def generate_plan(
        self,
        user_id: str,
        constraints: Optional[Union[PlanningConstraints, Mapping[str, Any]]] = None,
        content: Optional[Iterable[Union[TopicContent, ConceptContent, Mapping[str, Any]]]] = None,
        *,
        use_reasoner: bool = False,
    ) -> Plan:
        """Best plan over the curriculum, or over ``content`` when given.

        With ``use_reasoner`` the content is also turned into a knowledge base
        whose inferred order and prerequisites guide both strategies.
        """

        if constraints is None:
            constraints = PlanningConstraints(
                time_available=self.settings.session_time_minutes,
                sessions_per_week=self.settings.sessions_per_week,
            )
        elif not isinstance(constraints, PlanningConstraints):
            constraints = PlanningConstraints.model_validate(constraints)

        descriptors = parse_content(content) if content is not None else None
        with self._user_lock(user_id):
            model = self._load_model(user_id)
            items = self._planning_content(descriptors, constraints)
            knowledge_base = None
            if use_reasoner:
                source = descriptors
                if source is None:
                    source = [TopicContent(topic_id=topic.id) for topic in (items or self.curriculum.topics())]
                knowledge_base = self.reasoner.build_knowledge_base(source, model)
            return self.path_planner.generate_optimal_plan(model, constraints, items, knowledge_base)

    # ------------------------------------------------------------------
    def _planning_content(
        self,
        descriptors: Optional[Sequence[Union[TopicContent, ConceptContent]]],
        constraints: PlanningConstraints,
    ) -> Optional[List[Union[Topic, ConceptContent]]]:
        if descriptors is None:
            if constraints.goal_topic and constraints.goal_topic in self.curriculum:
                chain = self.curriculum.get_all_prerequisites(constraints.goal_topic) + [constraints.goal_topic]
                return [self.curriculum.get_topic(topic_id) for topic_id in chain if topic_id in self.curriculum]
            return None
        items: List[Union[Topic, ConceptContent]] = []
        for descriptor in descriptors:
            if isinstance(descriptor, ConceptContent):
                items.append(descriptor)
                continue
            topic = self.curriculum.get_topic(descriptor.topic_id)
            if topic is None:
                logger.warning("Skipping plan content for unknown topic %s", descriptor.topic_id)
                continue
            items.append(topic)
        return items

    # ------------------------------------------------------------------
    def schedule_plan(
        self,
        plan: Plan,
        start: Union[datetime, date, None] = None,
        preferences: Optional[Union[SchedulePreferences, Mapping[str, Any]]] = None,
        sessions_per_week: Optional[int] = None,
    ) -> StudySchedule:
        if preferences is not None and not isinstance(preferences, SchedulePreferences):
            preferences = SchedulePreferences.model_validate(preferences)
        hours = None
        if preferences is not None and preferences.preferred_hour is not None:
            hours = [preferences.preferred_hour]
        return self.scheduler.generate_study_schedule(
            plan,
            start=start,
            sessions_per_week=sessions_per_week or self.settings.sessions_per_week,
            preferred_times=hours,
            preferred_minute=preferences.preferred_minute if preferences is not None else 0,
        )

    # ------------------------------------------------------------------
    def plan_report(self, user_id: str, plan: Plan) -> Dict[str, Any]:
        """Read-only view handed to plan consumers."""

        with self._user_lock(user_id):
            model = self._load_model(user_id)
        return {"plan": plan.to_dict(), "user": model.snapshot()}

    # ------------------------------------------------------------------
    def close(self) -> None:
        closer = getattr(self.store, "close", None)
        if callable(closer):
            closer()
        predictor_closer = getattr(self.predictor, "close", None)
        if callable(predictor_closer):
            predictor_closer()


__all__ = ["TutoringEngine"]
