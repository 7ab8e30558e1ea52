import pytest
from pydantic import ValidationError

from engines.knowledge_reasoner import (
    KnowledgeReasoner,
    calculate_reasoning_confidence,
    extract_query_entities,
    identify_question_type,
)


def concept(concept_id, **extra):
    payload = {"kind": "concept", "id": concept_id, "name": concept_id.replace("_", " ").title()}
    payload.update(extra)
    return payload


PHOTOSYNTHESIS_CONTENT = [
    concept("light", name="Light Energy", domain="biology", definition="Radiation used in photosynthesis"),
    concept(
        "photosynthesis",
        name="Photosynthesis",
        domain="biology",
        definition="Plants convert light into chemical energy",
        prerequisites=["light"],
    ),
]


def test_same_domain_concepts_get_domain_edges():
    reasoner = KnowledgeReasoner()
    kb = reasoner.build_knowledge_base(
        [concept("mitosis", domain="biology"), concept("meiosis", domain="biology"), concept("dna", domain="biology")]
    )
    domain_edges = [rel for rel in kb.relationships if rel.type == "domain_related"]
    assert len(domain_edges) == 3
    assert all(rel.strength == 0.4 and rel.inferred for rel in domain_edges)
    pairs = {frozenset((rel.source, rel.target)) for rel in domain_edges}
    assert len(pairs) == 3


def test_difficulty_related_edges_link_neighbours():
    kb = KnowledgeReasoner().build_knowledge_base(
        [concept("a", difficulty=1), concept("b", difficulty=2), concept("c", difficulty=5)]
    )
    edges = [(rel.source, rel.target) for rel in kb.relationships if rel.type == "difficulty_related"]
    assert edges == [("a", "b")]


def test_structural_edges_block_domain_inference():
    kb = KnowledgeReasoner().build_knowledge_base(PHOTOSYNTHESIS_CONTENT)
    assert [rel.type for rel in kb.relationships_of("photosynthesis") if rel.type == "domain_related"] == []


def test_prerequisite_chain_inference():
    kb = KnowledgeReasoner().build_knowledge_base(
        [concept("a"), concept("b", prerequisites=["a"]), concept("c", prerequisites=["b"])]
    )
    chains = {inference.concept: inference.result["chain"] for inference in kb.inferences_for("prerequisite_inference")}
    assert chains["c"] == [
        {"concept": "b", "relationship": "prerequisite_for", "target": "c"},
        {"concept": "a", "relationship": "prerequisite_for", "target": "b"},
    ]


def test_prerequisite_chain_survives_cycles():
    kb = KnowledgeReasoner().build_knowledge_base(
        [concept("a", prerequisites=["b"]), concept("b", prerequisites=["a"])]
    )
    chains = kb.inferences_for("prerequisite_inference")
    assert len(chains) == 2
    assert all(len(item.result["chain"]) == 2 for item in chains)


def test_difficulty_adjustment_uses_learner_skill():
    kb = KnowledgeReasoner().build_knowledge_base(
        [concept("limits", difficulty=5, skills=["math.calculus"])],
        {"math.calculus": 0.1},
    )
    adjustment = kb.inferences_for("difficulty_progression")[0].result
    assert adjustment["original_difficulty"] == 5
    assert adjustment["recommended_difficulty"] == 1
    assert adjustment["reason"] == "Adjusted for user skill level (10%)"


def test_learning_path_optimization_interleaves_levels():
    kb = KnowledgeReasoner().build_knowledge_base(
        [concept("a", difficulty=1), concept("b", difficulty=3, prerequisites=["a"]), concept("c", difficulty=1)]
    )
    assert kb.optimized_order() == ["a", "b", "c"]


def test_small_collections_are_not_path_optimized():
    kb = KnowledgeReasoner().build_knowledge_base([concept("a"), concept("b")])
    assert kb.optimized_order() is None


def test_topic_content_is_resolved_through_curriculum(curriculum, user_model):
    reasoner = KnowledgeReasoner(curriculum)
    kb = reasoner.build_knowledge_base(
        [{"kind": "topic", "topic_id": "genetics"}, {"kind": "topic", "topic_id": "cell_biology"},
         {"kind": "topic", "topic_id": "ghost"}],
        user_model,
    )
    assert list(kb.concepts) == ["genetics", "cell_biology"]
    genetics = kb.concepts["genetics"]
    assert genetics.domain == "biology"
    assert genetics.prerequisites == ["cell_biology"]
    assert kb.concept_mastery("genetics", 0.0) == pytest.approx(0.5)


def test_untagged_content_is_rejected():
    with pytest.raises(ValidationError):
        KnowledgeReasoner().build_knowledge_base([{"id": "a", "name": "A"}])


def test_reasoning_answers_with_prerequisites():
    reasoner = KnowledgeReasoner()
    kb = reasoner.build_knowledge_base(PHOTOSYNTHESIS_CONTENT)
    result = reasoner.perform_logical_reasoning("What is photosynthesis?", kb)

    assert result.question_type == "what"
    assert [item["concept"] for item in result.relevant] == ["photosynthesis", "light"]
    assert result.conclusion["answer"] == "To understand this topic, you should first master: light"
    assert "Prerequisite analysis" in result.conclusion["supporting_evidence"]
    assert result.confidence == pytest.approx(0.95)


def test_reasoning_without_matches():
    reasoner = KnowledgeReasoner()
    kb = reasoner.build_knowledge_base(PHOTOSYNTHESIS_CONTENT)
    result = reasoner.perform_logical_reasoning("zzz qqq", kb)
    assert result.relevant == []
    assert result.conclusion["answer"] == "No matching concepts found."
    assert result.confidence == pytest.approx(0.3)


def test_reasoning_history_is_bounded():
    reasoner = KnowledgeReasoner(history_limit=3)
    kb = reasoner.build_knowledge_base(PHOTOSYNTHESIS_CONTENT)
    for index in range(5):
        reasoner.perform_logical_reasoning(f"query {index}", kb)
    assert [item.query for item in reasoner.history] == ["query 2", "query 3", "query 4"]


def test_confidence_is_monotonic_in_supporting_inferences():
    previous = calculate_reasoning_confidence([])
    assert previous == 0.3
    for count in range(1, 8):
        current = calculate_reasoning_confidence([{"confidence": 0.7}] * count)
        assert current >= previous
        assert current <= 0.95
        previous = current


@pytest.mark.parametrize(
    "query, expected",
    [
        ("How do cells divide?", "how"),
        ("Please explain osmosis", "explanation"),
        ("Compare mitosis and meiosis", "comparison"),
        ("Give an example of inertia", "example"),
        ("osmosis", "general"),
        ("", "general"),
    ],
)
def test_question_types(query, expected):
    assert identify_question_type(query) == expected


def test_query_entities():
    assert extract_query_entities("Does Energy flow through every system in a Cell?") == ["does", "energy", "system", "cell"]
