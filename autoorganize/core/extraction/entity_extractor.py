"""Rule-based entity extraction engine."""

import re
import time
from urllib.parse import urlsplit

from pydantic import BaseModel, Field

from autoorganize.config import ExtractionConfig
from autoorganize.models.entity import (
    Entity,
    EntityMention,
    EntityType,
    canonical_url,
    entity_key_id,
    normalize_entity_name,
)
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════
# PATTERNS
# ═══════════════════════════════════════════════════════════

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"[-a-zA-Z0-9()@:%_+.~#?&/=]*"
)

PHONE_PATTERN = re.compile(r"(?<![\w+])(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")

DATE_PATTERNS = [
    re.compile(
        r"\b(?:January|February|March|April|May|June|July|August|September|October|"
        r"November|December)\s+\d{1,2},?\s+\d{4}\b"
    ),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}-\d{1,2}-\d{4}\b"),
]

MONEY_PATTERNS = [
    re.compile(r"\$\s?\d[\d,]*(?:\.\d{2})?\b"),
    re.compile(r"\b\d+(?:\.\d{2})?\s?(?:USD|EUR|GBP|CAD|AUD)\b"),
]

PERCENT_PATTERNS = [
    re.compile(r"\b\d+(?:\.\d+)?%(?!\w)"),
    re.compile(r"\b\d+(?:\.\d+)?\s?percent\b"),
]

PERSON_PATTERN = re.compile(r"\b[A-Z][a-z]+(?: [A-Z][a-z]+)+\b")

ORG_SUFFIXES = ["Inc", "LLC", "Corp", "Company", "Corporation", "Ltd", "Limited", "Group"]
ORG_PATTERN = re.compile(
    r"\b(?:[A-Z][a-zA-Z&]*\s+){1,4}(?:" + "|".join(ORG_SUFFIXES) + r")\b"
)

LOCATION_SUFFIXES = [
    "Street", "St", "Avenue", "Ave", "Road", "Rd", "Boulevard", "Blvd", "City", "State", "Country",
]
LOCATION_PATTERN = re.compile(
    r"\b(?:\d+\s+)?(?:[A-Z][a-zA-Z]*\s+){1,4}(?:" + "|".join(LOCATION_SUFFIXES) + r")\b"
)

PROJECT_PATTERN = re.compile(r"\bProject\s+[A-Z][\w-]*(?:\s+[A-Z][\w-]*)*")

TECH_KEYWORDS = [
    "artificial intelligence", "machine learning", "deep learning", "neural network",
    "blockchain", "cryptocurrency", "cloud computing", "big data", "internet of things",
    "virtual reality", "augmented reality", "cybersecurity", "software engineering",
    "data science", "natural language processing", "computer vision", "robotics",
]

BUSINESS_KEYWORDS = [
    "marketing", "sales", "finance", "accounting", "human resources", "operations",
    "strategy", "management", "leadership", "entrepreneurship", "innovation",
    "supply chain", "customer service", "quality assurance", "project management",
]

# Addr-spec (dot-atom local part, dotted host) used to validate email matches
EMAIL_GRAMMAR = re.compile(
    r"^[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,}$"
)

_TRAILING_URL_PUNCTUATION = ".,;:!?)'\""

# Person matches inside these spans are dropped
_SUPPRESSES_PERSON = {EntityType.ORGANIZATION, EntityType.LOCATION, EntityType.PROJECT}


class ExtractionResult(BaseModel):
    """
    Entities and mentions found in one text.

    Entity ids are provisional (derived from type and normalized name) and
    mention ``document_id`` is empty until the pipeline binds them.
    """

    entities: list[Entity] = Field(default_factory=list)
    mentions: list[EntityMention] = Field(default_factory=list)
    confidence: float = 0.0
    processing_time_ms: float = 0.0

    def mentions_for(self, entity_id: str) -> list[EntityMention]:
        return [m for m in self.mentions if m.entity_id == entity_id]


class _Match:
    __slots__ = ("type", "text", "start", "end", "confidence", "properties")

    def __init__(
        self,
        entity_type: EntityType,
        text: str,
        start: int,
        end: int,
        confidence: float,
        properties: dict | None = None,
    ):
        self.type = entity_type
        self.text = text
        self.start = start
        self.end = end
        self.confidence = confidence
        self.properties = properties or {}


class EntityExtractor:
    """
    Extracts typed entities from text with pattern and heuristic rules.

    Deterministic: the same text and configuration always yield the same
    entities, mentions and provisional ids.

    Rules:
    - Patterns: email, url, phone, date, money/percent (financial)
    - Heuristics: person names, organizations, locations, projects
    - Keywords: technical and business concepts
    """

    def __init__(self, config: ExtractionConfig | None = None):
        """
        Initialize entity extractor.

        Args:
            config: Extraction configuration (min confidence, enabled types, context window)
        """
        self.config = config or ExtractionConfig()
        self.enabled_types = set(self.config.enabled_types)
        self._tech_pattern = self._keyword_pattern(TECH_KEYWORDS)
        self._business_pattern = self._keyword_pattern(BUSINESS_KEYWORDS)

    def extract(self, text: str) -> ExtractionResult:
        """
        Extract entities and mentions from text.

        Never raises for malformed input: empty, whitespace-only or
        non-string input yields an empty result.

        Args:
            text: Input text

        Returns:
            ExtractionResult with provisional entity ids
        """
        started = time.perf_counter()
        if not isinstance(text, str) or not text.strip():
            return ExtractionResult()

        matches: list[_Match] = []
        matches.extend(self._extract_by_patterns(text))
        matches.extend(self._extract_by_heuristics(text))
        matches.extend(self._extract_concepts(text))

        matches = [m for m in matches if m.type in self.enabled_types]
        matches = [m for m in matches if m.confidence >= self.config.min_confidence]
        matches = self._merge_overlapping(matches)
        matches = self._suppress_contained_persons(matches)

        result = self._build_result(text, matches)
        result.processing_time_ms = (time.perf_counter() - started) * 1000
        return result

    # ═══════════════════════════════════════════════════════════
    # RULES
    # ═══════════════════════════════════════════════════════════

    def _extract_by_patterns(self, text: str) -> list[_Match]:
        found: list[_Match] = []

        for match in EMAIL_PATTERN.finditer(text):
            value = match.group(0)
            if is_valid_email(value):
                found.append(_Match(EntityType.EMAIL, value, match.start(), match.end(), 0.95))

        for match in URL_PATTERN.finditer(text):
            value = match.group(0).rstrip(_TRAILING_URL_PUNCTUATION)
            if is_valid_url(value):
                found.append(
                    _Match(EntityType.URL, value, match.start(), match.start() + len(value), 0.95)
                )

        for match in PHONE_PATTERN.finditer(text):
            value = match.group(0)
            digits = sum(ch.isdigit() for ch in value)
            found.append(
                _Match(
                    EntityType.PHONE,
                    value,
                    match.start(),
                    match.end(),
                    0.9 if digits >= 10 else 0.6,
                )
            )

        for pattern in DATE_PATTERNS:
            for match in pattern.finditer(text):
                found.append(_Match(EntityType.DATE, match.group(0), match.start(), match.end(), 0.85))

        for kind, patterns in (("money", MONEY_PATTERNS), ("percent", PERCENT_PATTERNS)):
            for pattern in patterns:
                for match in pattern.finditer(text):
                    found.append(
                        _Match(
                            EntityType.FINANCIAL,
                            match.group(0),
                            match.start(),
                            match.end(),
                            0.9,
                            {"kind": kind},
                        )
                    )

        return found

    def _extract_by_heuristics(self, text: str) -> list[_Match]:
        found: list[_Match] = []

        for match in PERSON_PATTERN.finditer(text):
            found.append(
                _Match(
                    EntityType.PERSON,
                    match.group(0),
                    match.start(),
                    match.end(),
                    person_confidence(match.group(0)),
                )
            )

        for match in ORG_PATTERN.finditer(text):
            found.append(
                _Match(EntityType.ORGANIZATION, match.group(0), match.start(), match.end(), 0.8)
            )

        for match in LOCATION_PATTERN.finditer(text):
            found.append(_Match(EntityType.LOCATION, match.group(0), match.start(), match.end(), 0.7))

        for match in PROJECT_PATTERN.finditer(text):
            found.append(_Match(EntityType.PROJECT, match.group(0), match.start(), match.end(), 0.75))

        return found

    def _extract_concepts(self, text: str) -> list[_Match]:
        found: list[_Match] = []
        for pattern, entity_type, category in (
            (self._tech_pattern, EntityType.TECHNICAL, "technology"),
            (self._business_pattern, EntityType.CUSTOM, "business"),
        ):
            for match in pattern.finditer(text):
                found.append(
                    _Match(
                        entity_type,
                        match.group(0),
                        match.start(),
                        match.end(),
                        0.9,
                        {"category": category},
                    )
                )
        return found

    # ═══════════════════════════════════════════════════════════
    # POST-PROCESSING
    # ═══════════════════════════════════════════════════════════

    def _merge_overlapping(self, matches: list[_Match]) -> list[_Match]:
        """Merge overlapping matches of the same type (longer text, max confidence)."""
        merged: list[_Match] = []
        last_by_type: dict[EntityType, _Match] = {}

        for match in sorted(matches, key=lambda m: (m.start, -m.end, m.type.value)):
            last = last_by_type.get(match.type)
            if last is not None and match.start < last.end:
                if match.end > last.end:
                    # Extend the span and keep the surface text in sync with it
                    last.text = last.text + match.text[last.end - match.start :]
                    last.end = match.end
                last.confidence = max(last.confidence, match.confidence)
                last.properties = {**match.properties, **last.properties}
                continue
            merged.append(match)
            last_by_type[match.type] = match

        return merged

    def _suppress_contained_persons(self, matches: list[_Match]) -> list[_Match]:
        spans = [(m.start, m.end) for m in matches if m.type in _SUPPRESSES_PERSON]
        if not spans:
            return matches
        return [
            m
            for m in matches
            if m.type != EntityType.PERSON
            or not any(m.start < end and start < m.end for start, end in spans)
        ]

    def _build_result(self, text: str, matches: list[_Match]) -> ExtractionResult:
        entities: dict[str, Entity] = {}
        mentions: list[EntityMention] = []
        window = self.config.context_window

        for match in sorted(matches, key=lambda m: (m.start, m.end, m.type.value)):
            name = canonical_name(match.type, match.text)
            normalized = normalize_entity_name(match.type, name)
            if not normalized:
                continue
            entity_id = entity_key_id(match.type, normalized)

            existing = entities.get(entity_id)
            if existing is None:
                context = text[max(0, match.start - window) : min(len(text), match.end + window)]
                entities[entity_id] = Entity(
                    id=entity_id,
                    type=match.type,
                    name=name,
                    normalized_name=normalized,
                    confidence=round(match.confidence, 4),
                    properties={**match.properties, "context": context.strip()},
                )
            elif match.confidence > (existing.confidence or 0.0):
                existing.confidence = round(match.confidence, 4)

            mentions.append(
                EntityMention(
                    entity_id=entity_id,
                    start=match.start,
                    end=match.end,
                    confidence=round(match.confidence, 4),
                    text=match.text,
                )
            )

        confidence = (
            sum(m.confidence for m in mentions) / len(mentions) if mentions else 0.0
        )
        return ExtractionResult(
            entities=list(entities.values()), mentions=mentions, confidence=confidence
        )

    @staticmethod
    def _keyword_pattern(keywords: list[str]) -> re.Pattern:
        alternatives = sorted((k.replace(" ", r"\s+") for k in keywords), key=len, reverse=True)
        return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


# ═══════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════


def is_valid_email(value: str) -> bool:
    """Check a candidate against the addr-spec grammar and length limits."""
    if len(value) > 254 or not EMAIL_GRAMMAR.match(value):
        return False
    local, _, _ = value.partition("@")
    return len(local) <= 64


def is_valid_url(value: str) -> bool:
    """http(s) scheme with a dotted host."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    host = parts.hostname or ""
    return parts.scheme in ("http", "https") and "." in host and not host.endswith(".")


def person_confidence(name: str) -> float:
    """Heuristic confidence for a capitalized-words person candidate."""
    words = name.split(" ")
    confidence = 0.5
    if len(words) >= 2 and all(re.fullmatch(r"[A-Z][a-z]+", word) for word in words):
        confidence += 0.3
    if len(words) == 2:
        confidence += 0.1
    if len(name) < 4 or len(name) > 50:
        confidence -= 0.2
    return min(1.0, max(0.0, confidence))


def canonical_name(entity_type: EntityType, text: str) -> str:
    """Display name for an entity derived from its first surface text."""
    text = " ".join(text.split())
    if entity_type == EntityType.EMAIL:
        return text.lower()
    if entity_type == EntityType.URL:
        return canonical_url(text)
    if entity_type == EntityType.PERSON:
        return " ".join(word[:1].upper() + word[1:].lower() for word in text.split(" "))
    return text
