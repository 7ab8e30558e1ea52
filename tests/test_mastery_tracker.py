import math
import random

import pytest
from pydantic import ValidationError

from engines.mastery_tracker import (
    PracticeContext,
    SkillMasteryTracker,
    adaptive_learning_rate,
    build_feature_vector,
    recency_weight,
    time_efficiency_factor,
)
from user_model import PRACTICE_HISTORY_LIMIT, ActivityRecord, SkillState, Trajectory


class FixedPredictor:
    def __init__(self, value):
        self.value = value
        self.calls = []

    def predict(self, features):
        self.calls.append(list(features))
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


def _event(score, **extra):
    payload = {"score": score, "skills": ["math.algebra"], "difficulty": 3, "time_spent": 180}
    payload.update(extra)
    return payload


def test_mastery_stays_bounded_under_adversarial_updates(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    rng = random.Random(7)
    performances = [-5.0, 0.0, 1.0, 10.0, math.nan, math.inf, -math.inf, 0.5]
    difficulties = [0, 1, 5, 100, math.nan, -3]
    for _ in range(1000):
        context = {"time_spent": rng.choice([None, 0, 1, 180, 1e9]), "hints_used": rng.choice([None, 0, 3])}
        state = tracker.update_skill(
            user_model,
            "math.algebra",
            rng.choice(performances),
            rng.choice(difficulties),
            context,
        )
        assert 0.0 <= state.current <= 1.0
        assert 0.1 <= state.confidence <= 1.0
        assert len(state.practice_history) <= PRACTICE_HISTORY_LIMIT


def test_optimal_time_and_no_hints_raise_the_update(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    state = tracker.update_skill(
        user_model,
        "math.algebra",
        0.9,
        3,
        PracticeContext(time_spent=180, hints_used=0),
    )
    # rate 0.1 * 1.2 * 1.1, time factor 1.1, difficulty weight 3/5
    assert state.current == pytest.approx(0.5 + 0.4 * 0.132 * 0.6 * 1.1)
    assert state.current > 0.5


def test_update_without_context_uses_base_rate(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    state = tracker.update_skill(user_model, "math.algebra", 0.9, 3)
    assert state.current == pytest.approx(0.524)


def test_poor_performance_lowers_mastery(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    state = tracker.update_skill(user_model, "math.algebra", 0.1, 5)
    assert state.current < 0.5


def test_unknown_skill_is_a_no_op(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    before = user_model.to_dict()
    assert tracker.update_skill(user_model, "alchemy.transmutation", 1.0, 5) is None
    assert user_model.to_dict() == before


def test_practice_history_is_fifo_capped(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    for index in range(PRACTICE_HISTORY_LIMIT + 5):
        tracker.update_skill(user_model, "math.algebra", 0.6, 3, {"timestamp": f"t{index:02d}"})
    history = user_model.skills["math.algebra"].practice_history
    assert len(history) == PRACTICE_HISTORY_LIMIT
    assert history[0].timestamp == "t05"
    assert history[-1].timestamp == f"t{PRACTICE_HISTORY_LIMIT + 4:02d}"


def test_trajectory_needs_three_samples(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    tracker.update_skill(user_model, "math.algebra", 0.2, 3)
    tracker.update_skill(user_model, "math.algebra", 0.5, 3)
    assert user_model.skills["math.algebra"].trajectory is Trajectory.UNKNOWN

    tracker.update_skill(user_model, "math.algebra", 0.8, 3)
    state = user_model.skills["math.algebra"]
    assert state.trajectory is Trajectory.IMPROVING
    assert state.learning_velocity == pytest.approx(0.3)


def test_declining_and_stable_trajectories(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    for value in (0.9, 0.6, 0.3):
        tracker.update_skill(user_model, "math.algebra", value, 3)
    assert user_model.skills["math.algebra"].trajectory is Trajectory.DECLINING

    for value in (0.7, 0.7, 0.7):
        tracker.update_skill(user_model, "math.geometry", value, 3)
    assert user_model.skills["math.geometry"].trajectory is Trajectory.STABLE


def test_confidence_reflects_consistent_results(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    for _ in range(3):
        tracker.update_skill(user_model, "math.algebra", 0.9, 3)
    assert user_model.skills["math.algebra"].confidence == pytest.approx(0.9)


def test_learning_rate_modifiers():
    low = SkillState(current=0.2)
    high = SkillState(current=0.9)
    assert adaptive_learning_rate(low, 3, PracticeContext()) == pytest.approx(0.15)
    assert adaptive_learning_rate(high, 3, PracticeContext()) == pytest.approx(0.07)
    # ratio exactly 1.5 is outside the bonus window
    assert adaptive_learning_rate(SkillState(), 2, PracticeContext(time_spent=180)) == pytest.approx(0.1)


def test_time_efficiency_bands():
    assert time_efficiency_factor(None, 3) == 1.0
    assert time_efficiency_factor(180, 3) == 1.1
    assert time_efficiency_factor(100, 3) == 1.0
    assert time_efficiency_factor(70, 3) == 0.9
    assert time_efficiency_factor(30, 3) == 0.8
    assert time_efficiency_factor(400, 3) == 0.8


def test_recency_weight_favours_latest():
    assert recency_weight([]) == 0.5
    assert recency_weight([0.0, 1.0]) == pytest.approx(1.2 / 2.2)


def test_feature_vector_requires_five_activities():
    records = [
        ActivityRecord(timestamp=str(i), performance=p, difficulty=2, time_spent=60)
        for i, p in enumerate([0.5, 0.9, 0.8, 0.6, 1.0])
    ]
    assert build_feature_vector(records[:4]) is None
    features = build_feature_vector(records)
    assert features == pytest.approx([0.76, 60.0, 2.0, 0.6, 0.5])


def test_update_from_activity_drops_unknown_skills(user_model, catalog, caplog):
    tracker = SkillMasteryTracker(catalog)
    with caplog.at_level("WARNING"):
        tracker.update_from_activity(user_model, _event(0.9, skills=["math.algebra", "bogus.skill"]))
    assert "bogus.skill" in caplog.text
    assert "bogus.skill" not in user_model.skills
    assert user_model.skills["math.algebra"].current > 0.5
    assert user_model.activity_log[-1].skills == ["math.algebra"]


def test_update_from_activity_updates_statistics(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    tracker.update_from_activity(user_model, _event(0.9))
    tracker.update_from_activity(user_model, _event(0.8))
    tracker.update_from_activity(user_model, _event(0.2))
    stats = user_model.statistics
    assert stats.total_sessions == 3
    assert stats.total_time_spent == pytest.approx(540)
    assert stats.current_streak == 0
    assert stats.longest_streak == 2
    assert 0.0 < stats.average_score < 1.0


def test_learning_style_follows_best_scoring_activity(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    tracker.update_from_activity(user_model, _event(0.3, activity="diagram_quiz"))
    tracker.update_from_activity(user_model, _event(0.9, activity="interactive_game"))
    assert user_model.profile.learning_style == "kinesthetic"
    assert user_model.learning_style_analysis["visual"]["activities"] == 1


def test_invalid_event_is_rejected(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    with pytest.raises(ValidationError):
        tracker.update_from_activity(user_model, {"score": 1.5, "skills": ["math.algebra"]})
    assert user_model.activity_log == []


def test_prediction_is_attached_after_five_activities(user_model, catalog):
    predictor = FixedPredictor(0.42)
    tracker = SkillMasteryTracker(catalog, predictor)
    for _ in range(4):
        tracker.update_from_activity(user_model, _event(0.7))
    assert user_model.ml_prediction is None
    assert predictor.calls == []

    tracker.update_from_activity(user_model, _event(0.7))
    assert user_model.ml_prediction == pytest.approx(0.42)
    assert len(predictor.calls[-1]) == 5


@pytest.mark.parametrize(
    "value, expected",
    [(RuntimeError("down"), None), (math.nan, None), (None, None), (1.7, 1.0), ("junk", None)],
)
def test_prediction_failures_are_absent(user_model, catalog, value, expected):
    tracker = SkillMasteryTracker(catalog, FixedPredictor(value))
    for _ in range(5):
        tracker.update_from_activity(user_model, _event(0.7))
    assert user_model.ml_prediction == expected
    assert user_model.skills["math.algebra"].current > 0.5


def test_recommendations_cover_prediction_and_weaknesses(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    user_model.ml_prediction = 0.4
    recs = tracker.recommendations(user_model)
    assert recs[0]["type"] == "performance_boost"
    assert recs[0]["priority"] == "high"
    assert any(rec["type"] == "remediation" for rec in recs)
    assert not any(rec["type"] == "engagement" for rec in recs)


def test_activity_updates_concepts_and_error_patterns(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    for _ in range(3):
        tracker.update_from_activity(
            user_model,
            _event(
                0.3,
                topic="cell_structure",
                concepts_tested=["osmosis"],
                errors=[{"type": "misconception", "description": "water follows salt"}],
            ),
        )
    tracker.update_from_activity(user_model, _event(0.9, concepts_tested=["osmosis", "diffusion"]))

    osmosis = user_model.concept_mastery["osmosis"]
    assert (osmosis.attempts, osmosis.correct) == (4, 1)
    assert osmosis.common_errors[0]["count"] == 3
    assert user_model.concept_mastery["diffusion"].mastery_level == 1.0
    assert user_model.error_patterns.by_topic["cell_structure"]["total"] == 3
    assert len(user_model.error_patterns.temporal_trends) == 3
    assert [weakness.concept for weakness in user_model.concept_weaknesses] == ["osmosis"]

    recs = tracker.recommendations(user_model)
    review = next(rec for rec in recs if rec["type"] == "concept_review")
    assert review["concepts"] == ["osmosis"]
    pattern = next(rec for rec in recs if rec["type"] == "error_pattern")
    assert pattern["error_type"] == "misconception"


def test_single_error_does_not_trigger_error_pattern_advice(user_model, catalog):
    tracker = SkillMasteryTracker(catalog)
    tracker.update_from_activity(user_model, _event(0.9, errors=[{"type": "typo"}]))
    recs = tracker.recommendations(user_model)
    assert not any(rec["type"] in ("error_pattern", "concept_review") for rec in recs)
