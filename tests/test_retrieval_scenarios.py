from datetime import datetime, timedelta

import pytest

from tests.support.fake_embedding import axis_vector, vector_with_similarity
from userkb.search.retrieval import RetrievalResult, RetrievalService, format_context_for_prompt
from userkb.utils.time import utc_now


@pytest.fixture
def retrieval(store, embedder):
    return RetrievalService(store, embedder, default_limit=6)


def remember(store, embedder, user_id, content, content_type="user_fact", **kwargs):
    return store.insert_fact(user_id, content, content_type, embedder.embed(content), **kwargs)


def days_ago(days):
    return (datetime.fromisoformat(utc_now()) - timedelta(days=days)).isoformat()


def test_recalls_name_and_rejects_unrelated_question(store, embedder, retrieval):
    for content in ("My name is Alice", "I am 25 years old", "I work as a UX designer"):
        remember(store, embedder, "u1", content)

    about_me = retrieval.retrieve("u1", "What is my name?")
    unrelated = retrieval.retrieve("u1", "What is the capital of France?")

    assert about_me.facts[0].fact.content == "My name is Alice"
    assert about_me.has_relevant_context is True
    assert about_me.confidence == 0.9
    assert unrelated.has_relevant_context is False
    assert unrelated.facts == []


def test_newer_location_outranks_older_one(store, embedder, retrieval):
    remember(store, embedder, "u1", "I live in San Francisco", created_at=days_ago(3))
    remember(store, embedder, "u1", "I moved to New York City", created_at=days_ago(1))

    result = retrieval.retrieve("u1", "Where do I live now?")

    assert [item.fact.content for item in result.facts] == [
        "I moved to New York City",
        "I live in San Francisco",
    ]


def test_users_never_see_each_other(store, embedder, retrieval):
    remember(store, embedder, "alice", "My dog is called Rex")
    remember(store, embedder, "bob", "I have a pet dog too")

    alice = retrieval.retrieve("alice", "tell me about my dog")
    bob = retrieval.retrieve("bob", "tell me about my dog")

    assert {item.fact.user_id for item in alice.facts} == {"alice"}
    assert {item.fact.user_id for item in bob.facts} == {"bob"}


def test_literal_mention_beats_closer_vector(store, embedder, provider, retrieval):
    provider.overrides["travel niche"] = axis_vector(2)
    store.insert_fact(
        "u1",
        "Prefers publishers in the travel niche",
        "document",
        axis_vector(5),
        created_at=days_ago(90),
    )
    store.insert_fact("u1", "Reads tech blogs daily", "user_fact", axis_vector(2))

    result = retrieval.retrieve("u1", "travel niche")

    top = result.facts[0]
    assert top.fact.content == "Prefers publishers in the travel niche"
    assert top.priority_score == 3.0
    assert top.confidence_score == 0.95
    assert result.facts[1].similarity > top.similarity


def test_gate_requires_confidence_above_threshold(store, provider, retrieval):
    provider.overrides["gate query"] = axis_vector(0)
    store.insert_fact("u1", "weakly related", "document", vector_with_similarity(0.28))

    weak = retrieval.retrieve("u1", "gate query")
    assert weak.context_count == 1
    assert weak.confidence == 0.7
    assert weak.has_relevant_context is False

    store.insert_fact("u1", "more related", "document", vector_with_similarity(0.35))
    stronger = retrieval.retrieve("u1", "gate query")
    assert stronger.confidence == 0.8
    assert stronger.has_relevant_context is True


def test_repeated_retrieval_is_stable(store, embedder, retrieval):
    for content in ("My dog likes the park", "My pet needs a vet", "I bought dog food"):
        remember(store, embedder, "u1", content)

    first = [item.fact.id for item in retrieval.retrieve("u1", "dog").facts]
    second = [item.fact.id for item in retrieval.retrieve("u1", "dog").facts]

    assert first == second


def test_empty_store_returns_empty_result(retrieval):
    result = retrieval.retrieve("nobody", "anything at all")

    assert result.facts == []
    assert result.has_relevant_context is False
    assert result.confidence == 0.0
    assert result.average_confidence == 0.0


def test_blank_query_skips_embedding(provider, retrieval):
    result = retrieval.retrieve("u1", "   ")
    assert result.facts == []
    assert provider.calls == []


def test_user_is_required(retrieval):
    with pytest.raises(ValueError):
        retrieval.retrieve("", "dog")


def test_result_serializes_with_scores(store, embedder, retrieval):
    remember(store, embedder, "u1", "My dog is a beagle")

    payload = retrieval.retrieve("u1", "dog").to_dict()

    assert payload["hasRelevantContext"] is True
    assert payload["contextCount"] == 1
    fact = payload["facts"][0]
    assert fact["content"] == "My dog is a beagle"
    assert fact["confidenceScore"] == 0.95
    assert {"id", "contentType", "createdAt", "similarity", "priorityScore"} <= set(fact)


def test_prompt_context_lists_only_facts_above_gate(store, provider, retrieval):
    provider.overrides["prompt query"] = axis_vector(0)
    store.insert_fact("u1", "strong fact", "document", vector_with_similarity(0.9))
    store.insert_fact("u1", "borderline fact", "document", vector_with_similarity(0.28))

    block = format_context_for_prompt(retrieval.retrieve("u1", "prompt query"), gate=0.7)

    assert block == "Relevant information about this user:\n[1] strong fact"


def test_prompt_context_empty_without_relevant_facts():
    assert format_context_for_prompt(None, gate=0.7) == ""
    assert format_context_for_prompt(RetrievalResult(query="q"), gate=0.7) == ""
