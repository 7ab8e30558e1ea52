from datetime import date, datetime

import pytest

from engines.path_planner import Plan, PlanStateError, PlanStatus, Session
from engines.plan_scheduler import PlanScheduler, generate_milestones, session_start


def _session(topic_id, name=None, duration=30):
    return Session(
        topic_id=topic_id,
        name=name or topic_id.title(),
        activities=[{"type": "practice", "duration": 20, "description": "Practice"}],
        prerequisites=[],
        objectives=[f"Understand {topic_id}"],
        duration=duration,
        difficulty=3,
        skills=[],
    )


def _selected_plan(topic_ids):
    plan = Plan(strategy="shortest_path", budget=1000, sessions=[_session(topic_id) for topic_id in topic_ids])
    plan.transition(PlanStatus.SCORED)
    plan.transition(PlanStatus.SELECTED)
    return plan


def test_sessions_are_spread_through_the_week():
    start = datetime(2024, 1, 1, 8, 0)
    assert session_start(start, 0, 3) == datetime(2024, 1, 1, 19, 0)
    assert session_start(start, 1, 3) == datetime(2024, 1, 3, 19, 0)
    assert session_start(start, 2, 3) == datetime(2024, 1, 5, 19, 0)
    assert session_start(start, 3, 3) == datetime(2024, 1, 8, 19, 0)


def test_preferred_hours_rotate_per_slot():
    start = datetime(2024, 1, 1)
    hours = [9, 18]
    assert [session_start(start, index, 3, hours).hour for index in range(4)] == [9, 18, 9, 9]


def test_schedule_marks_plan_scheduled():
    plan = _selected_plan(["optics", "optics", "waves"])
    schedule = PlanScheduler().generate_study_schedule(plan, start=date(2024, 3, 4), sessions_per_week=2)

    assert plan.status is PlanStatus.SCHEDULED
    assert [session.number for session in schedule.sessions] == [1, 2, 3]
    assert [session.start for session in schedule.sessions] == [
        datetime(2024, 3, 4, 19, 0),
        datetime(2024, 3, 7, 19, 0),
        datetime(2024, 3, 11, 19, 0),
    ]
    assert schedule.total_duration == 90
    payload = schedule.to_dict()
    assert payload["sessions"][0]["start"] == "2024-03-04T19:00:00"
    assert payload["sessions_per_week"] == 2


def test_preferred_minute_is_applied():
    plan = _selected_plan(["optics"])
    schedule = PlanScheduler().generate_study_schedule(
        plan, start=datetime(2024, 3, 4), preferred_times=[7], preferred_minute=30
    )
    assert schedule.sessions[0].start == datetime(2024, 3, 4, 7, 30)


def test_milestones_for_long_plan():
    plan = _selected_plan(["optics"] * 8)
    schedule = PlanScheduler().generate_study_schedule(plan, start=datetime(2024, 1, 1))
    assert [(m.type, m.session_number) for m in schedule.milestones] == [
        ("weekly_review", 7),
        ("concept_mastery", 8),
        ("course_completion", 8),
    ]
    assert schedule.milestones[1].to_dict()["topic_id"] == "optics"


def test_milestones_for_empty_schedule():
    assert generate_milestones([]) == []


def test_single_session_topics_have_no_mastery_milestone():
    plan = _selected_plan(["optics", "waves"])
    schedule = PlanScheduler().generate_study_schedule(plan, start=datetime(2024, 1, 1))
    assert [m.type for m in schedule.milestones] == ["course_completion"]


def test_only_selected_plans_can_be_scheduled():
    scheduler = PlanScheduler()
    draft = Plan(strategy="shortest_path", budget=60, sessions=[_session("optics")])
    with pytest.raises(PlanStateError):
        scheduler.generate_study_schedule(draft)

    plan = _selected_plan(["optics"])
    scheduler.generate_study_schedule(plan)
    with pytest.raises(PlanStateError):
        scheduler.generate_study_schedule(plan)


@pytest.mark.parametrize(
    "kwargs",
    [{"sessions_per_week": 0}, {"preferred_times": [24]}, {"preferred_times": [-1]}, {"preferred_minute": 60}],
)
def test_invalid_schedule_arguments(kwargs):
    plan = _selected_plan(["optics"])
    with pytest.raises(ValueError):
        PlanScheduler().generate_study_schedule(plan, **kwargs)
    assert plan.status is PlanStatus.SELECTED
