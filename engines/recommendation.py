"""Keyword, topic and affect weighted selection of educational content."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import yaml

logger = logging.getLogger(__name__)

DIFFICULTIES = ("beginner", "intermediate", "advanced")
AFFECTIVE_STATES = ("confused", "frustrated", "engaged", "neutral")

KEYWORD_WEIGHT = 3
TOPIC_WEIGHT = 2
AFFECT_WEIGHT = 1
TITLE_WEIGHT = 1
TITLE_PREFIX_LENGTH = 20


class ContentCatalogError(ValueError):
    """Raised when the content corpus file contains invalid data."""


@dataclass(frozen=True)
class ContentItem:
    id: str
    title: str
    topics: Tuple[str, ...]
    keywords: Tuple[str, ...]
    difficulty: str
    description: str = ""
    duration: Optional[str] = None
    channel: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["topics"] = list(self.topics)
        payload["keywords"] = list(self.keywords)
        return payload


@dataclass(frozen=True)
class MatchQuery:
    text: str
    current_topic: Optional[str] = None
    affective_state: Optional[str] = None

    def __post_init__(self) -> None:
        if self.affective_state is not None and self.affective_state not in AFFECTIVE_STATES:
            raise ValueError(f"Unknown affective state: {self.affective_state}")


@dataclass(frozen=True)
class ScoredItem:
    item: ContentItem
    score: int
    reasons: Tuple[str, ...] = field(default_factory=tuple)


def score_item(query: MatchQuery, item: ContentItem) -> ScoredItem:
    """Score ``item`` against ``query``; see module constants for weights."""

    text = (query.text or "").lower()
    topic = (query.current_topic or "").lower()
    score = 0
    reasons: List[str] = []

    for keyword in item.keywords:
        if keyword.lower() in text:
            score += KEYWORD_WEIGHT
            reasons.append(f"keyword:{keyword}")

    for item_topic in item.topics:
        needle = item_topic.lower()
        if needle in text or needle in topic:
            score += TOPIC_WEIGHT
            reasons.append(f"topic:{item_topic}")

    state = query.affective_state
    if state in ("confused", "frustrated") and item.difficulty == "beginner":
        score += AFFECT_WEIGHT
        reasons.append(f"affect:{state}")
    elif state == "engaged" and item.difficulty in ("intermediate", "advanced"):
        score += AFFECT_WEIGHT
        reasons.append("affect:engaged")

    prefix = text[:TITLE_PREFIX_LENGTH]
    # A blank prefix is a substring of every title and carries no signal.
    if prefix.strip() and prefix in item.title.lower():
        score += TITLE_WEIGHT
        reasons.append("title")

    return ScoredItem(item=item, score=score, reasons=tuple(reasons))


def best_scored(query: MatchQuery, corpus: Sequence[ContentItem]) -> Optional[ScoredItem]:
    best: Optional[ScoredItem] = None
    for item in corpus:
        candidate = score_item(query, item)
        # Strictly greater: the first registered item wins ties.
        if best is None or candidate.score > best.score:
            best = candidate
    if best is None or best.score <= 0:
        return None
    return best


def best_match(query: MatchQuery, corpus: Sequence[ContentItem]) -> Optional[ContentItem]:
    """Return the highest scoring item, or ``None`` when nothing is relevant."""

    best = best_scored(query, corpus)
    if best is None:
        logger.debug("No content matched query %r", query.text[:40])
        return None
    logger.debug("Best content match %s (score %d)", best.item.id, best.score)
    return best.item


def items_by_topic(topic: str, corpus: Iterable[ContentItem]) -> List[ContentItem]:
    """Return items whose topics or keywords contain ``topic`` (case-insensitive)."""

    needle = (topic or "").strip().lower()
    if not needle:
        return []
    return [
        item
        for item in corpus
        if any(needle in t.lower() for t in item.topics)
        or any(needle in k.lower() for k in item.keywords)
    ]


def random_beginner_item(
    corpus: Iterable[ContentItem],
    rng: Optional[random.Random] = None,
) -> Optional[ContentItem]:
    beginners = [item for item in corpus if item.difficulty == "beginner"]
    if not beginners:
        return None
    return (rng or random).choice(beginners)


def _load_payload(path: Path) -> Any:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".json", ".jsonc"}:
        return json.loads(text)
    if suffix in {".yml", ".yaml"}:
        return yaml.safe_load(text)
    raise ContentCatalogError(f"Unsupported content corpus format: {path}")


def _string_tuple(value: Any, *, item_id: str, field_name: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ContentCatalogError(f"Item {item_id} {field_name} must be a list of strings")
    cleaned = []
    for entry in value:
        text = str(entry).strip()
        if text:
            cleaned.append(text)
    return tuple(cleaned)


def parse_items(raw: Any) -> List[ContentItem]:
    """Validate a decoded corpus payload and build :class:`ContentItem` objects."""

    if isinstance(raw, dict) and "items" in raw:
        raw = raw["items"]
    if not isinstance(raw, list):
        raise ContentCatalogError("Content corpus must be a list of items")

    items: List[ContentItem] = []
    seen: set[str] = set()
    for idx, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            raise ContentCatalogError(f"Entry #{idx} must be an object")

        item_id = str(entry.get("id") or entry.get("video_id") or "").strip()
        if not item_id:
            raise ContentCatalogError(f"Entry #{idx} is missing a non-empty 'id'")
        if item_id in seen:
            raise ContentCatalogError(f"Duplicate content id detected: {item_id}")
        seen.add(item_id)

        title = str(entry.get("title") or "").strip()
        if not title:
            raise ContentCatalogError(f"Item {item_id} is missing a non-empty 'title'")

        difficulty = str(entry.get("difficulty") or "").strip().lower()
        if difficulty not in DIFFICULTIES:
            raise ContentCatalogError(
                f"Item {item_id} difficulty must be one of {', '.join(DIFFICULTIES)}"
            )

        items.append(
            ContentItem(
                id=item_id,
                title=title,
                topics=_string_tuple(entry.get("topics") or [], item_id=item_id, field_name="topics"),
                keywords=_string_tuple(entry.get("keywords") or [], item_id=item_id, field_name="keywords"),
                difficulty=difficulty,
                description=str(entry.get("description") or "").strip(),
                duration=entry.get("duration"),
                channel=entry.get("channel"),
            )
        )
    return items


class ContentCatalog:
    """Read-only content corpus loaded once from a JSON or YAML file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Content corpus file not found: {self.path}")
        self._items: Tuple[ContentItem, ...] = tuple(parse_items(_load_payload(self.path)))
        logger.info("Loaded %d content items from %s", len(self._items), self.path)

    @classmethod
    def from_items(cls, items: Iterable[ContentItem]) -> "ContentCatalog":
        catalog = cls.__new__(cls)
        catalog.path = Path("<memory>")
        catalog._items = tuple(items)
        return catalog

    @property
    def items(self) -> Tuple[ContentItem, ...]:
        return self._items

    def get(self, item_id: str) -> Optional[ContentItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def best_match(self, query: MatchQuery) -> Optional[ContentItem]:
        return best_match(query, self._items)

    def by_topic(self, topic: str) -> List[ContentItem]:
        return items_by_topic(topic, self._items)

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
