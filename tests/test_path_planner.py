import pytest

from engines.knowledge_reasoner import KnowledgeReasoner
from engines.path_planner import (
    LearningPathPlanner,
    Plan,
    PlanningItem,
    PlanStateError,
    PlanStatus,
    Session,
    adjusted_duration,
    ideal_difficulty,
    session_activities,
)
from schemas import ConceptContent, PlanningConstraints


def set_levels(model, levels):
    for skill_id, value in levels.items():
        model.skills[skill_id].current = value
    model.refresh_derived()
    return model


def _algebra_items():
    return [
        PlanningItem(id="a", name="Algebra", difficulty=3, estimated_minutes=20, skills=("math.algebra",)),
        PlanningItem(
            id="b",
            name="Calculus",
            difficulty=3,
            estimated_minutes=20,
            skills=("math.calculus",),
            prerequisites=("a",),
        ),
    ]


@pytest.mark.parametrize("time_available, sessions_per_week", [(30, 2), (45, 3), (60, 5), (90, 1)])
def test_plans_never_exceed_budget(curriculum, user_model, time_available, sessions_per_week):
    planner = LearningPathPlanner(curriculum)
    constraints = PlanningConstraints(time_available=time_available, sessions_per_week=sessions_per_week)
    plans = planner.build_candidate_plans(user_model, constraints)
    assert {plan.strategy for plan in plans} == {"shortest_path", "constraint_satisfaction"}
    for plan in plans:
        assert plan.budget == time_available * sessions_per_week
        assert plan.total_time <= plan.budget
    satisfaction = next(plan for plan in plans if plan.strategy == "constraint_satisfaction")
    assert all(session.duration <= time_available for session in satisfaction.sessions)
    assert len(satisfaction.sessions) <= sessions_per_week * 4


def test_shortest_path_stops_at_budget(curriculum, user_model):
    planner = LearningPathPlanner(curriculum)
    constraints = PlanningConstraints(time_available=30, sessions_per_week=2)
    plan = planner.shortest_path_plan(user_model, planner._planning_items(None), constraints)
    assert [session.topic_id for session in plan.sessions] == ["atomic_structure"]
    assert plan.total_time == 45


def test_optimal_plan_selects_highest_score(curriculum, user_model):
    planner = LearningPathPlanner(curriculum)
    constraints = PlanningConstraints(time_available=30, sessions_per_week=2)
    plans = planner.build_candidate_plans(user_model, constraints)
    best = planner.select_optimal_plan(plans, user_model)

    assert best.strategy == "shortest_path"
    assert best.status is PlanStatus.SELECTED
    assert best.score == pytest.approx(10 * 0.3 + 5 * 0.25 + 3 * 0.8 + 4 * 1.0)
    others = [plan for plan in plans if plan is not best]
    assert all(plan.status is PlanStatus.DISCARDED for plan in others)
    assert all(plan.score <= best.score for plan in others)


def test_planning_does_not_mutate_learner(curriculum, user_model):
    planner = LearningPathPlanner(curriculum)
    before = user_model.to_dict()
    plan = planner.generate_optimal_plan(user_model, {"time_available": 60, "sessions_per_week": 5})
    assert user_model.to_dict() == before
    assert plan.adaptive_elements["content_personalization"]["reinforcement_frequency"] == "increased"
    assert len(plan.adaptive_elements["progress_monitoring"]["checkpoints"]) == len(plan.sessions)


def test_simulated_gains_unlock_dependent_items(user_model):
    planner = LearningPathPlanner()
    set_levels(user_model, {"math.algebra": 0.55})
    plan = planner.constraint_satisfaction_plan(user_model, _algebra_items(), PlanningConstraints())
    assert [session.topic_id for session in plan.sessions] == ["a", "b"]
    assert plan.sessions[1].prerequisites == ["a"]
    assert user_model.skills["math.algebra"].current == pytest.approx(0.55)


def test_unready_prerequisites_exclude_items(user_model):
    planner = LearningPathPlanner()
    set_levels(user_model, {"math.algebra": 0.4})
    plan = planner.constraint_satisfaction_plan(user_model, _algebra_items(), PlanningConstraints())
    assert [session.topic_id for session in plan.sessions] == ["a"]
    assert plan.sessions[0].soft_score == 1.0


def test_concept_content_can_be_planned(user_model):
    planner = LearningPathPlanner()
    content = [
        ConceptContent(id="fractions", name="Fractions", skills=["math.arithmetic"], duration_minutes=25),
        ConceptContent(id="ratios", name="Ratios", skills=["math.arithmetic"], prerequisites=["fractions"]),
    ]
    plan = planner.generate_optimal_plan(user_model, PlanningConstraints(), content)
    assert plan.status is PlanStatus.SELECTED
    assert plan.sessions[0].topic_id == "fractions"


def test_reasoner_order_guides_critical_path(user_model):
    reasoner = KnowledgeReasoner()
    raw = [
        {"kind": "concept", "id": "a", "name": "A", "difficulty": 1},
        {"kind": "concept", "id": "b", "name": "B", "difficulty": 3, "prerequisites": ["a"]},
        {"kind": "concept", "id": "c", "name": "C", "difficulty": 1},
    ]
    kb = reasoner.build_knowledge_base(raw)
    items = [
        PlanningItem(id="c", name="C", difficulty=1, estimated_minutes=10),
        PlanningItem(id="a", name="A", difficulty=1, estimated_minutes=10),
    ]
    ordered = LearningPathPlanner().critical_path(user_model, items, kb)
    assert [item.id for item in ordered] == ["a", "c"]


def test_critical_path_is_capped(user_model):
    items = [PlanningItem(id=f"t{i}", name=f"T{i}", difficulty=3, estimated_minutes=5) for i in range(15)]
    assert len(LearningPathPlanner().critical_path(user_model, items)) == 10


def test_plan_state_machine_rejects_illegal_moves():
    plan = Plan(strategy="shortest_path", budget=60)
    with pytest.raises(PlanStateError):
        plan.transition(PlanStatus.SELECTED)
    plan.transition(PlanStatus.SCORED)
    plan.transition(PlanStatus.DISCARDED)
    with pytest.raises(PlanStateError):
        plan.transition(PlanStatus.SCHEDULED)


def test_select_requires_candidates(user_model):
    with pytest.raises(ValueError):
        LearningPathPlanner().select_optimal_plan([], user_model)


def test_empty_plan_scores(user_model):
    plan = Plan(strategy="constraint_satisfaction", budget=0, confidence=0.9)
    assert LearningPathPlanner.score_plan(plan, user_model) == pytest.approx(2.7)
    plan.budget = 100
    assert LearningPathPlanner.score_plan(plan, user_model) == pytest.approx(7.7)


def test_difficulty_helpers():
    assert ideal_difficulty(0.0) == 1
    assert ideal_difficulty(0.5) == 3
    assert ideal_difficulty(1.0) == 5
    hard = PlanningItem(id="x", name="X", difficulty=5, estimated_minutes=30)
    easy = PlanningItem(id="y", name="Y", difficulty=1, estimated_minutes=30)
    assert adjusted_duration(hard, 0.0) == 45.0
    assert adjusted_duration(easy, 1.0) == 22.5


def test_session_activities_follow_learning_style():
    activities = session_activities("Optics", "auditory")
    assert [activity["type"] for activity in activities] == ["reading", "practice", "explanation", "assessment"]
    assert [activity["type"] for activity in session_activities("Optics", "unknown")] == [
        "reading",
        "practice",
        "assessment",
    ]


def test_outcomes_and_serialisation(user_model):
    session = Session(
        topic_id="a",
        name="A",
        activities=session_activities("A", "visual"),
        prerequisites=[],
        objectives=["Understand A"],
        duration=20,
        difficulty=3,
        skills=["math.algebra"],
    )
    outcomes = LearningPathPlanner.predict_outcomes([session, session], user_model)
    assert [outcome["expected_improvement"] for outcome in outcomes] == [0.3, 0.3]
    assert outcomes[1]["session"] == 2
    plan = Plan(strategy="shortest_path", budget=60, sessions=[session])
    payload = plan.to_dict()
    assert payload["status"] == "draft"
    assert payload["total_time"] == 20
    assert payload["sessions"][0]["activities"][2]["type"] == "diagram_creation"


def test_badly_mismatched_session_is_rejected(user_model):
    set_levels(user_model, {skill_id: 0.0 for skill_id in user_model.skills})
    items = [PlanningItem(id="hard", name="Hard", difficulty=5, estimated_minutes=30, skills=("math.algebra",))]
    plan = LearningPathPlanner().constraint_satisfaction_plan(user_model, items, PlanningConstraints())
    assert plan.sessions == []


def test_stretch_session_is_accepted_on_engagement_and_balance(user_model):
    set_levels(user_model, {"math.algebra": 0.5})
    items = [PlanningItem(id="stretch", name="Stretch", difficulty=5, estimated_minutes=30, skills=("math.algebra",))]
    plan = LearningPathPlanner().constraint_satisfaction_plan(user_model, items, PlanningConstraints())
    assert [session.topic_id for session in plan.sessions] == ["stretch"]
    assert plan.sessions[0].soft_score == pytest.approx(2 / 3)
    assert plan.sessions[0].activities[0]["type"] == "review"


def test_style_balance_is_measured_across_the_plan():
    def session(style, stretch):
        return Session(
            topic_id="s",
            name="S",
            activities=session_activities("S", style, stretch),
            prerequisites=[],
            objectives=[],
            duration=30,
            difficulty=3,
            skills=[],
        )

    balanced = session("visual", 0)
    too_easy = session("visual", -2)
    assert [activity["type"] for activity in too_easy.activities] == ["practice", "diagram_creation", "assessment"]
    assert LearningPathPlanner._balances_styles(balanced, [], "visual")
    assert not LearningPathPlanner._balances_styles(too_easy, [], "visual")
    assert LearningPathPlanner._balances_styles(too_easy, [balanced, balanced], "visual")
    assert not LearningPathPlanner._balances_styles(balanced, [], "auditory")
