"""Wire schema for characters, relations, per-event deltas, and chapter caches."""

from __future__ import annotations

import logging
import math
from typing import Any, Final, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

CHAPTER_CACHE_VERSION: Final[Literal["chapter_events.v1"]] = "chapter_events.v1"


def normalize_character_id(value: object) -> str | None:
    """Normalize wire ids so `7`, `7.0`, and `"7"` name the same character."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else repr(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return str(int(text))
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    if not math.isfinite(number) or not number.is_integer():
        return text
    return str(int(number))


def id_sort_key(value: str) -> tuple[int, float, str]:
    """Sort numeric ids numerically ahead of textual ids."""
    try:
        return (0, int(value), value)
    except ValueError:
        pass
    try:
        return (0, float(value), value)
    except ValueError:
        return (1, 0.0, value)


def canonical_pair(first: str, second: str) -> tuple[str, str]:
    """Order a relation pair numerically when both ids are numeric, else lexicographically."""
    if id_sort_key(second) < id_sort_key(first):
        return second, first
    return first, second


def pair_sort_key(pair: tuple[str, str]) -> tuple[tuple[int, float, str], tuple[int, float, str]]:
    return id_sort_key(pair[0]), id_sort_key(pair[1])


def edge_element_id(first: str, second: str) -> str:
    """Build the stable edge id for an undirected pair."""
    low, high = canonical_pair(first, second)
    return f"{low}-{high}"


def _string_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a string or a list of strings")
    seen: set[str] = set()
    items: list[str] = []
    for raw in value:
        if raw is None:
            continue
        item = str(raw).strip()
        if not item or item in seen:
            continue
        seen.add(item)
        items.append(item)
    return items


class WireModel(BaseModel):
    """Lenient model configuration for upstream graph payloads."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)


class CharacterState(WireModel):
    """One character as known at a point in the story."""

    id: str
    name: str | None = None
    common_name: str | None = None
    names: list[str] = Field(default_factory=list)
    description: str = ""
    is_main: bool = Field(
        default=False, validation_alias=AliasChoices("is_main", "isMain", "main_character")
    )
    profile_image: str | None = Field(
        default=None, validation_alias=AliasChoices("profile_image", "profileImage", "image")
    )
    weight: float = Field(default=0.0, ge=0.0)
    appearance_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("appearance_count", "appearanceCount", "count"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: object) -> str:
        normalized = normalize_character_id(value)
        if normalized is None:
            raise ValueError("character id is required")
        return normalized

    @field_validator("names", mode="before")
    @classmethod
    def _normalize_names(cls, value: object) -> list[str]:
        return _string_list(value)

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, value: object) -> str:
        return "" if value is None else str(value)

    def display_label(self) -> str:
        """Return the first available of common name, name, first alias, or id."""
        for candidate in (self.common_name, self.name, *self.names):
            if candidate:
                return candidate
        return self.id


class RelationState(WireModel):
    """An undirected relation between two characters, stored on its canonical pair."""

    id1: str = Field(validation_alias=AliasChoices("id1", "source"))
    id2: str = Field(validation_alias=AliasChoices("id2", "target"))
    tags: list[str] = Field(default_factory=list, validation_alias=AliasChoices("tags", "relation"))
    positivity: float = 0.0
    weight: float = Field(default=1.0, ge=0.0)
    count: int = Field(default=1, ge=0)

    @field_validator("id1", "id2", mode="before")
    @classmethod
    def _normalize_endpoint(cls, value: object) -> str:
        normalized = normalize_character_id(value)
        if normalized is None:
            raise ValueError("relation endpoint is required")
        if normalized == "0":
            raise ValueError("relation endpoint must be nonzero")
        return normalized

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: object) -> list[str]:
        return _string_list(value)

    @field_validator("positivity", mode="before")
    @classmethod
    def _clamp_positivity(cls, value: object) -> float:
        if value is None:
            return 0.0
        if not isinstance(value, (int, float, str)):
            raise ValueError("positivity must be numeric")
        number = float(value)
        if not math.isfinite(number):
            return 0.0
        return max(-1.0, min(1.0, number))

    @field_validator("weight", mode="before")
    @classmethod
    def _default_weight(cls, value: object) -> object:
        return 1.0 if value is None else value

    @model_validator(mode="after")
    def _canonicalize(self) -> RelationState:
        if self.id1 == self.id2:
            raise ValueError("relation endpoints must differ")
        self.id1, self.id2 = canonical_pair(self.id1, self.id2)
        return self

    @property
    def pair(self) -> tuple[str, str]:
        return self.id1, self.id2

    @property
    def edge_id(self) -> str:
        return f"{self.id1}-{self.id2}"


class EventDelta(WireModel):
    """Complete state of every entity one narrative event touched."""

    event_idx: int = Field(ge=1, validation_alias=AliasChoices("event_idx", "eventIdx"))
    char_start_pos: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("char_start_pos", "charStartPos")
    )
    char_end_pos: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("char_end_pos", "charEndPos")
    )
    characters: list[CharacterState] = Field(default_factory=list)
    relations: list[RelationState] = Field(default_factory=list)
    removed_character_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("removed_character_ids", "removedCharacterIds"),
    )
    removed_relation_pairs: list[tuple[str, str]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("removed_relation_pairs", "removedRelationPairs"),
    )
    event_meta: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("event_meta", "eventMeta", "event")
    )

    @field_validator("removed_character_ids", mode="before")
    @classmethod
    def _normalize_removed_ids(cls, value: object) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("removed_character_ids must be a list")
        ids: list[str] = []
        for raw in value:
            normalized = normalize_character_id(raw)
            if normalized is not None:
                ids.append(normalized)
        return ids

    @field_validator("removed_relation_pairs", mode="before")
    @classmethod
    def _normalize_removed_pairs(cls, value: object) -> list[tuple[str, str]]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("removed_relation_pairs must be a list")
        pairs: list[tuple[str, str]] = []
        for raw in value:
            if not isinstance(raw, (list, tuple)) or len(raw) != 2:
                raise ValueError("removed relation pair must have two ids")
            first = normalize_character_id(raw[0])
            second = normalize_character_id(raw[1])
            if first is None or second is None:
                raise ValueError("removed relation pair ids are required")
            pairs.append(canonical_pair(first, second))
        return pairs

    @model_validator(mode="after")
    def _check_span(self) -> EventDelta:
        if (
            self.char_start_pos is not None
            and self.char_end_pos is not None
            and self.char_end_pos < self.char_start_pos
        ):
            raise ValueError("char_end_pos must not precede char_start_pos")
        return self


class BaseSnapshot(WireModel):
    """Fully materialized state at the first cached event of a chapter."""

    event_idx: int = Field(default=1, ge=1, validation_alias=AliasChoices("event_idx", "eventIdx"))
    characters: list[CharacterState] = Field(default_factory=list)
    relations: list[RelationState] = Field(default_factory=list)
    event_meta: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("event_meta", "eventMeta", "event")
    )


class ChapterSnapshotCache(WireModel):
    """Cache unit for one (book, chapter): base snapshot plus ordered deltas."""

    version: Literal["chapter_events.v1"] = CHAPTER_CACHE_VERSION
    book_id: str = Field(min_length=1, validation_alias=AliasChoices("book_id", "bookId"))
    chapter_idx: int = Field(ge=1, validation_alias=AliasChoices("chapter_idx", "chapterIdx"))
    base_snapshot: BaseSnapshot = Field(
        validation_alias=AliasChoices("base_snapshot", "baseSnapshot")
    )
    diffs: list[EventDelta] = Field(default_factory=list)
    max_event_idx: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("max_event_idx", "maxEventIdx")
    )
    manifest_fingerprint: str | None = Field(
        default=None, validation_alias=AliasChoices("manifest_fingerprint", "manifestFingerprint")
    )

    @field_validator("book_id", mode="before")
    @classmethod
    def _book_id_text(cls, value: object) -> str:
        return "" if value is None else str(value)

    @model_validator(mode="after")
    def _order_deltas(self) -> ChapterSnapshotCache:
        base_idx = self.base_snapshot.event_idx
        ordered: dict[int, EventDelta] = {}
        for delta in self.diffs:
            if delta.event_idx < base_idx:
                raise ValueError("delta precedes base snapshot")
            ordered[delta.event_idx] = delta
        self.diffs = [ordered[idx] for idx in sorted(ordered)]
        highest = max([base_idx, *ordered])
        self.max_event_idx = max(self.max_event_idx, highest)
        return self


class FlatChapterEvent(WireModel):
    """One event as returned by the fine graph endpoint, without a base snapshot."""

    event_idx: int = Field(ge=1, validation_alias=AliasChoices("event_idx", "eventIdx", "idx"))
    characters: list[CharacterState] = Field(default_factory=list)
    relations: list[RelationState] = Field(default_factory=list)
    event_meta: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("event_meta", "eventMeta", "event")
    )


class FlatChapterEvents(WireModel):
    """Cache unit for a chapter that only has a flat event list."""

    book_id: str = Field(min_length=1, validation_alias=AliasChoices("book_id", "bookId"))
    chapter_idx: int = Field(ge=1, validation_alias=AliasChoices("chapter_idx", "chapterIdx"))
    events: list[FlatChapterEvent] = Field(default_factory=list)
    max_event_idx: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("max_event_idx", "maxEventIdx")
    )

    @model_validator(mode="after")
    def _track_max(self) -> FlatChapterEvents:
        if self.events:
            highest = max(event.event_idx for event in self.events)
            self.max_event_idx = max(self.max_event_idx, highest)
        return self


class GraphPayload(WireModel):
    """`result` body of a graph envelope."""

    characters: list[dict[str, Any]] = Field(default_factory=list)
    relations: list[dict[str, Any]] = Field(default_factory=list)
    event: dict[str, Any] | None = None


class GraphEnvelope(WireModel):
    """Transport envelope returned by the graph endpoints."""

    is_success: bool = Field(
        default=False, validation_alias=AliasChoices("is_success", "isSuccess")
    )
    result: GraphPayload | None = None

    @property
    def is_usable(self) -> bool:
        return self.is_success and self.result is not None


def parse_characters(raw_items: list[dict[str, Any]]) -> list[CharacterState]:
    """Validate characters one by one, skipping malformed entries."""
    characters: list[CharacterState] = []
    for raw in raw_items:
        try:
            characters.append(CharacterState.model_validate(raw))
        except ValidationError as exc:
            logger.warning("schema.character_skipped errors=%s", exc.error_count())
    return characters


def parse_relations(raw_items: list[dict[str, Any]]) -> list[RelationState]:
    """Validate relations one by one, skipping self-loops and malformed entries."""
    relations: list[RelationState] = []
    for raw in raw_items:
        try:
            relations.append(RelationState.model_validate(raw))
        except ValidationError as exc:
            logger.debug("schema.relation_skipped errors=%s", exc.error_count())
    return relations


def parse_event_delta(raw: object) -> EventDelta | None:
    """Validate one delta; a malformed delta is logged and returned as None."""
    try:
        return EventDelta.model_validate(raw)
    except ValidationError as exc:
        event_idx = raw.get("eventIdx", raw.get("event_idx")) if isinstance(raw, dict) else None
        logger.warning(
            "schema.malformed_delta event_idx=%s errors=%s", event_idx, exc.error_count()
        )
        return None


def parse_chapter_cache(raw: object) -> ChapterSnapshotCache | None:
    """Validate a chapter cache, dropping malformed deltas instead of the whole cache."""
    if not isinstance(raw, dict):
        return None
    payload = dict(raw)
    raw_diffs = payload.pop("diffs", None)
    if raw_diffs is None:
        raw_diffs = []
    if not isinstance(raw_diffs, list):
        logger.warning("schema.malformed_diffs type=%s", type(raw_diffs).__name__)
        raw_diffs = []
    deltas = [delta for delta in (parse_event_delta(item) for item in raw_diffs) if delta]
    try:
        cache = ChapterSnapshotCache.model_validate({**payload, "diffs": []})
    except ValidationError as exc:
        logger.warning("schema.malformed_chapter_cache errors=%s", exc.error_count())
        return None
    base_idx = cache.base_snapshot.event_idx
    kept: list[EventDelta] = []
    for delta in deltas:
        if delta.event_idx < base_idx:
            logger.warning(
                "schema.delta_before_base event_idx=%s base_event_idx=%s",
                delta.event_idx,
                base_idx,
            )
            continue
        kept.append(delta)
    return ChapterSnapshotCache(
        book_id=cache.book_id,
        chapter_idx=cache.chapter_idx,
        base_snapshot=cache.base_snapshot,
        diffs=kept,
        max_event_idx=cache.max_event_idx,
        manifest_fingerprint=cache.manifest_fingerprint,
    )


def parse_envelope(raw: object) -> GraphEnvelope | None:
    """Validate a transport envelope; anything unusable becomes None."""
    if raw is None:
        return None
    try:
        envelope = GraphEnvelope.model_validate(raw)
    except ValidationError as exc:
        logger.warning("schema.malformed_envelope errors=%s", exc.error_count())
        return None
    return envelope if envelope.is_usable else None
