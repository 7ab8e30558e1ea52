import pytest

from curriculum import CurriculumGraph, Topic
from engines.curriculum_planner import CurriculumPlanner


def set_levels(model, levels):
    for skill_id, value in levels.items():
        model.skills[skill_id].current = value
    model.refresh_derived()
    return model


CELL_BIOLOGY_SKILLS = ("biology.cell_structure", "biology.cell_function", "biology.organelles")


def test_genetics_is_suitable_once_cell_biology_is_strong(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    genetics = curriculum.get_topic("genetics")
    assert not planner.is_topic_suitable(genetics, user_model)

    set_levels(user_model, {skill: 0.9 for skill in CELL_BIOLOGY_SKILLS})
    assert planner.is_topic_suitable(genetics, user_model)


def test_prerequisite_just_below_threshold_blocks(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    set_levels(user_model, {"biology.cell_structure": 0.9, "biology.cell_function": 0.9, "biology.organelles": 0.69})
    assert not planner.is_topic_suitable(curriculum.get_topic("genetics"), user_model)


def test_mastered_topic_is_not_suitable(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    set_levels(user_model, {skill: 0.85 for skill in CELL_BIOLOGY_SKILLS})
    cell_biology = curriculum.get_topic("cell_biology")
    assert planner.is_topic_mastered(cell_biology, user_model)
    assert not planner.is_topic_suitable(cell_biology, user_model)


def test_optimize_for_time_respects_budget_and_is_greedy(curriculum):
    planner = CurriculumPlanner(curriculum)
    topics = curriculum.topics()
    budget = 100
    path = planner.optimize_for_time(topics, budget)

    assert path.topic_ids == ["cell_biology", "atomic_structure"]
    assert path.estimated_minutes == 85
    assert path.estimated_minutes <= budget
    for topic in topics:
        if topic.id not in path.topic_ids:
            assert path.estimated_minutes + topic.estimated_minutes > budget


@pytest.mark.parametrize("budget", [0, 10, 44.9, 45, 200, 1000])
def test_optimize_for_time_never_exceeds_budget(curriculum, budget):
    path = CurriculumPlanner(curriculum).optimize_for_time(curriculum.topics(), budget)
    assert path.estimated_minutes <= budget
    assert path.estimated_minutes == sum(topic.estimated_minutes for topic in path.topics)


def test_sort_is_stable_for_equivalent_topics(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    assert planner.sort_topics_by_optimal_order(["cell_biology", "atomic_structure"], user_model) == [
        "cell_biology",
        "atomic_structure",
    ]
    assert planner.sort_topics_by_optimal_order(["atomic_structure", "cell_biology"], user_model) == [
        "atomic_structure",
        "cell_biology",
    ]


def test_sort_puts_much_easier_topics_first(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    ordered = planner.sort_topics_by_optimal_order(["organic_chemistry", "atomic_structure", "ghost"], user_model)
    assert ordered == ["atomic_structure", "organic_chemistry"]


def test_sort_prefers_stronger_topics_within_one_level(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    set_levels(user_model, {"science.chemical_bonding": 0.9, "science.electron_configuration": 0.9})
    ordered = planner.sort_topics_by_optimal_order(["atomic_structure", "chemical_bonding"], user_model)
    assert ordered == ["chemical_bonding", "atomic_structure"]


def test_path_to_goal_includes_unmastered_prerequisites(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    path = planner.generate_path_to_goal(user_model, "organic_chemistry", 1000)
    assert set(path.topic_ids) == {"atomic_structure", "chemical_bonding", "organic_chemistry"}
    assert path.estimated_minutes == 155
    assert len(path.skill_gaps) == 7
    assert path.skill_gaps[0].required == 0.8


def test_path_to_goal_is_trimmed_to_budget(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    path = planner.generate_path_to_goal(user_model, "organic_chemistry", 100)
    assert path.topic_ids == ["atomic_structure", "chemical_bonding"]
    assert path.estimated_minutes == 95


def test_path_to_goal_skips_mastered_topics(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    set_levels(user_model, {skill: 0.9 for skill in CELL_BIOLOGY_SKILLS})
    path = planner.generate_path_to_goal(user_model, "genetics", 1000)
    assert path.topic_ids == ["genetics"]


def test_path_to_unknown_goal_is_empty(curriculum, user_model, caplog):
    planner = CurriculumPlanner(curriculum)
    with caplog.at_level("WARNING"):
        path = planner.generate_path_to_goal(user_model, "astrology", 1000)
    assert path.topics == []
    assert path.estimated_minutes == 0
    assert "astrology" in caplog.text


def test_path_to_goal_survives_cycles(user_model):
    graph = CurriculumGraph(
        [
            Topic(id="a", name="A", prerequisites=("b",), skills=("math.algebra",)),
            Topic(id="b", name="B", prerequisites=("a",), skills=("math.geometry",)),
        ]
    )
    path = CurriculumPlanner(graph).generate_path_to_goal(user_model, "a", 1000)
    assert sorted(path.topic_ids) == ["a", "b"]


def test_recommended_path_for_new_learner(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    path = planner.generate_recommended_path(user_model, 1000)
    assert path.topic_ids == ["atomic_structure", "chemical_bonding"]
    assert path.estimated_minutes == 95
    assert "Starting with fundamental concepts." in path.reasoning
    assert path.to_dict()["reasoning"].startswith("Focusing on strengthening weak areas first.")


def test_next_topic_prefers_dependents_of_current(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    assert planner.next_recommended_topic(user_model).id == "atomic_structure"

    set_levels(user_model, {skill: 0.75 for skill in CELL_BIOLOGY_SKILLS})
    assert planner.next_recommended_topic(user_model, current_topic="cell_biology").id == "genetics"


def test_next_topic_none_when_everything_mastered(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    set_levels(user_model, {skill_id: 0.95 for skill_id in user_model.skills})
    assert planner.next_recommended_topic(user_model) is None


def test_topic_priority_rewards_weaknesses(curriculum, user_model):
    planner = CurriculumPlanner(curriculum)
    topic = curriculum.get_topic("atomic_structure")
    assert planner.topic_priority(topic, user_model) == pytest.approx(56)


@pytest.mark.parametrize("available, expected", [(30, []), (90, ["atomic_structure"]), (95, ["atomic_structure", "chemical_bonding"])])
def test_recommended_path_fits_available_time(curriculum, user_model, available, expected):
    set_levels(user_model, {"biology.genetics": 0.1, "biology.inheritance": 0.1})
    path = CurriculumPlanner(curriculum).generate_recommended_path(user_model, available)
    assert path.topic_ids == expected
    assert path.estimated_minutes <= available
