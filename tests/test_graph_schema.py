from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from story_graph.core.graph_schema import (
    CharacterState,
    FlatChapterEvents,
    RelationState,
    canonical_pair,
    edge_element_id,
    normalize_character_id,
    parse_chapter_cache,
    parse_characters,
    parse_envelope,
    parse_event_delta,
    parse_relations,
)


def test_normalize_character_id_unifies_numeric_forms() -> None:
    assert normalize_character_id(7) == "7"
    assert normalize_character_id(7.0) == "7"
    assert normalize_character_id(" 7 ") == "7"
    assert normalize_character_id("alice") == "alice"
    assert normalize_character_id(None) is None
    assert normalize_character_id(True) is None
    assert normalize_character_id("  ") is None
    assert normalize_character_id("7.0") == "7"
    assert normalize_character_id("7.5") == "7.5"


def test_large_numeric_ids_stay_distinct() -> None:
    first = normalize_character_id("12345678901234567891")
    second = normalize_character_id(12345678901234567890)
    assert first == "12345678901234567891"
    assert second == "12345678901234567890"
    assert first is not None and second is not None
    assert canonical_pair(first, second) == (second, first)

    characters = parse_characters(
        [{"id": "12345678901234567891", "name": "A"}, {"id": "12345678901234567890", "name": "B"}]
    )
    assert sorted(character.id for character in characters) == [
        "12345678901234567890",
        "12345678901234567891",
    ]


def test_canonical_pair_orders_numeric_ids_numerically() -> None:
    assert canonical_pair("10", "9") == ("9", "10")
    assert canonical_pair("b", "a") == ("a", "b")
    assert canonical_pair("3", "alice") == ("3", "alice")
    assert edge_element_id("12", "2") == "2-12"


def test_character_state_accepts_camel_case_aliases() -> None:
    character = CharacterState.model_validate(
        {
            "id": 4,
            "name": "Anna Karenina",
            "common_name": "Anna",
            "names": ["Anya", "Anya", " ", None],
            "isMain": True,
            "profileImage": "anna.png",
            "appearanceCount": 3,
            "description": None,
        }
    )
    assert character.id == "4"
    assert character.is_main is True
    assert character.profile_image == "anna.png"
    assert character.appearance_count == 3
    assert character.names == ["Anya"]
    assert character.description == ""
    assert character.display_label() == "Anna"


def test_display_label_falls_back_to_id() -> None:
    assert CharacterState(id="9").display_label() == "9"
    assert CharacterState(id="9", names=["Nine"]).display_label() == "Nine"


def test_relation_state_canonicalizes_and_clamps() -> None:
    relation = RelationState.model_validate(
        {"source": 5, "target": "2", "positivity": 3.5, "relation": "rival"}
    )
    assert relation.pair == ("2", "5")
    assert relation.edge_id == "2-5"
    assert relation.positivity == 1.0
    assert relation.tags == ["rival"]
    assert relation.weight == 1.0

    non_finite = RelationState.model_validate({"id1": 1, "id2": 2, "positivity": float("nan")})
    assert non_finite.positivity == 0.0


@pytest.mark.parametrize(
    "payload",
    [
        {"id1": 3, "id2": 3},
        {"id1": 0, "id2": 2},
        {"id1": None, "id2": 2},
    ],
)
def test_relation_state_rejects_invalid_endpoints(payload: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        RelationState.model_validate(payload)


def test_parse_helpers_skip_malformed_entries() -> None:
    characters = parse_characters([{"id": 1, "name": "Anna"}, {"name": "no id"}])
    relations = parse_relations([{"id1": 1, "id2": 2}, {"id1": 1, "id2": 1}])
    assert [character.id for character in characters] == ["1"]
    assert [relation.edge_id for relation in relations] == ["1-2"]


def test_parse_event_delta_logs_and_returns_none(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="story_graph.core.graph_schema"):
        delta = parse_event_delta({"eventIdx": 4, "charStartPos": 20, "charEndPos": 10})
    assert delta is None
    assert "schema.malformed_delta event_idx=4" in caplog.text


def test_parse_event_delta_canonicalizes_removed_pairs() -> None:
    delta = parse_event_delta(
        {
            "eventIdx": 2,
            "removedCharacterIds": [3, "4.0"],
            "removedRelationPairs": [[7, 2]],
        }
    )
    assert delta is not None
    assert delta.removed_character_ids == ["3", "4"]
    assert delta.removed_relation_pairs == [("2", "7")]


def test_parse_chapter_cache_drops_bad_deltas_but_keeps_the_cache() -> None:
    cache = parse_chapter_cache(
        {
            "bookId": "book-1",
            "chapterIdx": 2,
            "baseSnapshot": {"eventIdx": 3, "characters": [{"id": 1, "name": "Anna"}]},
            "diffs": [
                {"eventIdx": 5, "characters": [{"id": 2, "name": "Ben"}]},
                {"eventIdx": 2, "characters": [{"id": 3, "name": "Too early"}]},
                {"characters": []},
                {"eventIdx": 4, "characters": [{"id": 4, "name": "Cara"}]},
            ],
        }
    )
    assert cache is not None
    assert [delta.event_idx for delta in cache.diffs] == [4, 5]
    assert cache.max_event_idx == 5
    assert cache.base_snapshot.characters[0].name == "Anna"


def test_parse_chapter_cache_rejects_missing_base() -> None:
    assert parse_chapter_cache({"bookId": "book-1", "chapterIdx": 1}) is None
    assert parse_chapter_cache(["not", "a", "dict"]) is None


def test_flat_chapter_events_tracks_highest_event() -> None:
    events = FlatChapterEvents.model_validate(
        {
            "bookId": "book-1",
            "chapterIdx": 1,
            "events": [{"eventIdx": 3}, {"idx": 1}, {"eventIdx": 2}],
        }
    )
    assert events.max_event_idx == 3


def test_parse_envelope_treats_unsuccessful_payloads_as_missing() -> None:
    assert parse_envelope(None) is None
    assert parse_envelope({"isSuccess": False, "result": {"characters": []}}) is None
    assert parse_envelope({"isSuccess": True}) is None
    assert parse_envelope({"isSuccess": True, "result": "oops"}) is None

    envelope = parse_envelope(
        {"isSuccess": True, "result": {"characters": [{"id": 1}], "event": {"idx": 2}}}
    )
    assert envelope is not None
    assert envelope.result is not None
    assert envelope.result.characters == [{"id": 1}]
    assert envelope.result.event == {"idx": 2}
