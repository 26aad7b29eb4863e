import json
import random

import pytest

from engines.recommendation import (
    ContentCatalog,
    ContentCatalogError,
    ContentItem,
    MatchQuery,
    best_match,
    best_scored,
    parse_items,
    random_beginner_item,
    score_item,
)


def _item(item_id, *, title="Untitled", topics=(), keywords=(), difficulty="beginner"):
    return ContentItem(id=item_id, title=title, topics=tuple(topics), keywords=tuple(keywords), difficulty=difficulty)


@pytest.fixture
def catalog(corpus_path):
    return ContentCatalog(corpus_path)


def test_confused_learner_gets_beginner_neural_network_video(catalog):
    query = MatchQuery(text="I'm confused about neural networks", affective_state="confused")
    best = best_scored(query, catalog.items)
    assert best.item.id == "aircAruvnKk"
    assert best.item.difficulty == "beginner"
    assert "affect:confused" in best.reasons


def test_irrelevant_text_returns_none(catalog):
    assert best_match(MatchQuery(text="zzqx qqq"), catalog.items) is None


def test_empty_corpus_returns_none():
    assert best_match(MatchQuery(text="neural"), []) is None


def test_current_topic_contributes_without_text(catalog):
    item = catalog.best_match(MatchQuery(text="", current_topic="Computer Vision"))
    assert item.id == "WxjuSnNQ244"


def test_weights_per_signal():
    item = _item("a", title="Gradient descent explained", topics=["optimisation"], keywords=["gradient"], difficulty="intermediate")
    scored = score_item(MatchQuery(text="gradient descent explained for optimisation", affective_state="engaged"), item)
    # keyword 3 + topic 2 + engaged on intermediate 1 + title prefix 1
    assert scored.score == 7
    assert scored.reasons == ("keyword:gradient", "topic:optimisation", "affect:engaged", "title")


def test_blank_text_prefix_gives_no_title_bonus():
    item = _item("a", title="Anything")
    assert score_item(MatchQuery(text="   "), item).score == 0


def test_ties_go_to_first_item_in_corpus_order():
    first = _item("first", keywords=["python"])
    second = _item("second", keywords=["python"])
    assert best_match(MatchQuery(text="python basics"), [first, second]).id == "first"
    assert best_match(MatchQuery(text="python basics"), [second, first]).id == "second"


def test_affect_breaks_ties_by_difficulty():
    beginner = _item("easy", keywords=["python"], difficulty="beginner")
    advanced = _item("hard", keywords=["python"], difficulty="advanced")
    corpus = [beginner, advanced]
    assert best_match(MatchQuery(text="python", affective_state="frustrated"), corpus).id == "easy"
    assert best_match(MatchQuery(text="python", affective_state="engaged"), corpus).id == "hard"
    assert best_match(MatchQuery(text="python", affective_state="neutral"), corpus).id == "easy"


def test_unknown_affective_state_rejected():
    with pytest.raises(ValueError):
        MatchQuery(text="x", affective_state="sleepy")


def test_topic_listing(catalog):
    ids = [item.id for item in catalog.by_topic("python")]
    assert ids == ["7eh4d6sabA0", "WxjuSnNQ244", "tPYj3fFJGjk"]
    assert catalog.by_topic("  ") == []


def test_random_beginner_item(catalog):
    item = random_beginner_item(catalog.items, rng=random.Random(7))
    assert item.difficulty == "beginner"
    assert random_beginner_item([_item("x", difficulty="advanced")]) is None


def test_catalog_loads_yaml(tmp_path):
    path = tmp_path / "corpus.yaml"
    path.write_text(
        "items:\n"
        "  - video_id: v1\n"
        "    title: Intro to NLP\n"
        "    topics: [nlp]\n"
        "    keywords: nlp\n"
        "    difficulty: Beginner\n",
        encoding="utf-8",
    )
    catalog = ContentCatalog(path)
    assert len(catalog) == 1
    item = catalog.get("v1")
    assert item.keywords == ("nlp",)
    assert item.difficulty == "beginner"


def test_catalog_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ContentCatalog(tmp_path / "missing.json")


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"not": "a list"}, "must be a list"),
        ([{"title": "No id", "difficulty": "beginner"}], "missing a non-empty 'id'"),
        ([{"id": "a", "title": "A", "difficulty": "beginner"}, {"id": "a", "title": "B", "difficulty": "beginner"}], "Duplicate"),
        ([{"id": "a", "title": "A", "difficulty": "expert"}], "difficulty"),
        ([{"id": "a", "difficulty": "beginner"}], "title"),
    ],
)
def test_parse_items_validation(raw, message):
    with pytest.raises(ContentCatalogError, match=message):
        parse_items(raw)


def test_to_dict_is_json_serialisable(catalog):
    payload = catalog.get("aircAruvnKk").to_dict()
    assert json.loads(json.dumps(payload))["topics"][0] == "neural networks"


def test_beginner_item_preferred_over_intermediate_with_same_keyword(catalog):
    query = MatchQuery(text="I don't understand neural networks, so confusing", affective_state="confused")
    item = best_match(query, catalog.items)
    assert item.difficulty == "beginner"
    assert "neural" in item.keywords


def test_unrelated_text_has_no_recommendation(catalog):
    assert best_match(MatchQuery(text="unrelated gibberish xyzzy"), catalog.items) is None
