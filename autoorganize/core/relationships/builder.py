"""Relationship inference from document co-occurrence and declared metadata."""

from itertools import combinations
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from autoorganize.config import RelationshipConfig
from autoorganize.core.graph_store.base import GraphStore
from autoorganize.models.entity import Entity, EntityMention, EntityType, normalize_entity_name
from autoorganize.models.relationships import (
    DEFAULT_RELATIONSHIP_TYPES,
    DeclaredRelationship,
    GraphRelationship,
    RelationshipBuildResult,
    RelationshipCandidate,
    RelationshipOrigin,
    RelationshipType,
)
from autoorganize.utils.exceptions import RelationshipBuildFailure, StoreError
from autoorganize.utils.id_generator import generate_relationship_id
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)


class RelationshipBuilder:
    """
    Derives or strengthens graph edges for a newly ingested document.

    Candidate edges per entity pair:
    - declared: listed in ``metadata["relationships"]`` as {source, target, type}
    - relates_to: entities mentioned within ``proximity_window`` characters
    - mentions: any other pair co-occurring in the document

    One candidate survives per pair, chosen by ``type_precedence``. Within
    the same precedence a non-default label wins over relates_to/mentions.
    Existing edges are strengthened instead of duplicated.
    """

    def __init__(self, graph_store: GraphStore, config: RelationshipConfig | None = None):
        """
        Initialize relationship builder.

        Args:
            graph_store: Graph store for entity lookup and edge upserts
            config: Relationship configuration
        """
        self.graph_store = graph_store
        self.config = config or RelationshipConfig()
        self._rank = {origin: i for i, origin in enumerate(self.config.type_precedence)}

    async def build(
        self,
        document_id: str,
        entities: list[Entity],
        mentions: list[EntityMention],
        metadata: dict[str, Any] | None = None,
    ) -> RelationshipBuildResult:
        """
        Derive edges for one document and persist them.

        Args:
            document_id: Document the entities were extracted from
            entities: Stored entities (canonical ids)
            mentions: Mentions bound to those ids
            metadata: Document metadata (may declare relationships)

        Returns:
            Created and strengthened edges

        Raises:
            RelationshipBuildFailure: If the graph store rejects an update
        """
        try:
            declared = await self._declared_candidates(entities, metadata or {})
            candidates = declared + self.cooccurrence_candidates(entities, mentions)
            chosen = self.resolve(candidates)

            result = RelationshipBuildResult()
            for candidate in chosen:
                relationship = GraphRelationship(
                    id=generate_relationship_id(),
                    source_entity_id=candidate.source_entity_id,
                    target_entity_id=candidate.target_entity_id,
                    relationship_type=candidate.relationship_type,
                    strength=self.config.initial_strength,
                    properties={
                        **candidate.properties,
                        "origin": candidate.origin.value,
                        "document_id": document_id,
                    },
                )
                stored, created = await self.graph_store.upsert_relationship(
                    relationship, self.config.strength_increment
                )
                (result.created if created else result.strengthened).append(stored)
        except StoreError as e:
            raise RelationshipBuildFailure(
                f"Relationship build failed for {document_id}: {e}",
                {"document_id": document_id},
            ) from e

        logger.debug(
            f"Built relationships for {document_id}",
            extra={
                "document_id": document_id,
                "created": len(result.created),
                "strengthened": len(result.strengthened),
            },
        )
        return result

    # ═══════════════════════════════════════════════════════════
    # CANDIDATES
    # ═══════════════════════════════════════════════════════════

    def cooccurrence_candidates(
        self, entities: list[Entity], mentions: list[EntityMention]
    ) -> list[RelationshipCandidate]:
        """Propose relates_to (near) or mentions (far) edges for co-occurring pairs."""
        spans: dict[str, list[EntityMention]] = {}
        for mention in mentions:
            spans.setdefault(mention.entity_id, []).append(mention)

        pool = [e for e in entities if e.id in spans]
        pool.sort(key=lambda e: (-(e.confidence or 0.0), e.id))
        pool = pool[: self.config.max_entities_per_document]

        candidates: list[RelationshipCandidate] = []
        for first, second in combinations(sorted(pool, key=lambda e: e.id), 2):
            if first.id == second.id:
                continue
            distance, near_a, near_b = _closest(spans[first.id], spans[second.id])
            source_id, target_id = first.id, second.id
            if distance <= self.config.proximity_window:
                candidates.append(
                    RelationshipCandidate(
                        source_entity_id=source_id,
                        target_entity_id=target_id,
                        relationship_type=RelationshipType.RELATES_TO.value,
                        origin=RelationshipOrigin.RELATES_TO,
                        properties={
                            "distance": distance,
                            "confidence": self._proximity_confidence(near_a, near_b, distance),
                        },
                    )
                )
            candidates.append(
                RelationshipCandidate(
                    source_entity_id=source_id,
                    target_entity_id=target_id,
                    relationship_type=RelationshipType.MENTIONS.value,
                    origin=RelationshipOrigin.MENTIONS,
                    properties={"distance": distance},
                )
            )
        return candidates

    async def _declared_candidates(
        self, entities: list[Entity], metadata: dict[str, Any]
    ) -> list[RelationshipCandidate]:
        raw = metadata.get("relationships")
        if not isinstance(raw, list):
            return []

        by_name: dict[str, Entity] = {}
        for entity in entities:
            by_name.setdefault(entity.normalized_name, entity)

        candidates: list[RelationshipCandidate] = []
        for item in raw:
            try:
                declared = DeclaredRelationship.model_validate(item)
            except PydanticValidationError:
                logger.warning(
                    "Ignoring malformed declared relationship", extra={"relationship": str(item)}
                )
                continue

            source = await self._resolve_name(declared.source, by_name)
            target = await self._resolve_name(declared.target, by_name)
            if source is None or target is None or source.id == target.id:
                logger.debug(
                    "Declared relationship endpoints not found",
                    extra={"source": declared.source, "target": declared.target},
                )
                continue

            candidates.append(
                RelationshipCandidate(
                    source_entity_id=source.id,
                    target_entity_id=target.id,
                    relationship_type=declared.type.strip().lower(),
                    origin=RelationshipOrigin.DECLARED,
                )
            )
        return candidates

    async def _resolve_name(self, name: str, by_name: dict[str, Entity]) -> Entity | None:
        entity = by_name.get(normalize_entity_name_any(name))
        if entity is not None:
            return entity
        matches = await self.graph_store.find_entities_by_name(name)
        return matches[0] if matches else None

    # ═══════════════════════════════════════════════════════════
    # PRECEDENCE
    # ═══════════════════════════════════════════════════════════

    def resolve(self, candidates: list[RelationshipCandidate]) -> list[RelationshipCandidate]:
        """
        Pick one candidate per unordered entity pair.

        Lower precedence rank wins; at equal rank a non-default label beats
        a default one; remaining ties keep the first proposed candidate.
        """
        best: dict[frozenset[str], tuple[tuple[int, int, int], RelationshipCandidate]] = {}
        for order, candidate in enumerate(candidates):
            pair = frozenset((candidate.source_entity_id, candidate.target_entity_id))
            score = (
                self._rank.get(candidate.origin, len(self._rank)),
                1 if candidate.relationship_type in DEFAULT_RELATIONSHIP_TYPES else 0,
                order,
            )
            current = best.get(pair)
            if current is None or score < current[0]:
                best[pair] = (score, candidate)
        return [candidate for _, candidate in best.values()]

    def _proximity_confidence(self, a: EntityMention, b: EntityMention, distance: int) -> float:
        proximity = 1 - distance / max(1, self.config.proximity_window)
        average = (a.confidence + b.confidence) / 2
        return round(max(0.0, min(0.7, proximity * 0.4 + average * 0.3)), 4)


def normalize_entity_name_any(name: str) -> str:
    """Normalized key used to match declared names against extracted entities."""
    return normalize_entity_name(EntityType.CUSTOM, name)


def _closest(
    first: list[EntityMention], second: list[EntityMention]
) -> tuple[int, EntityMention, EntityMention]:
    """Smallest character gap between any two mentions (0 when overlapping)."""
    best: tuple[int, EntityMention, EntityMention] | None = None
    for a in first:
        for b in second:
            gap = max(0, max(a.start, b.start) - min(a.end, b.end))
            if best is None or gap < best[0]:
                best = (gap, a, b)
    return best
