"""Relationship derivation for the entity graph."""

from autoorganize.core.relationships.builder import RelationshipBuilder

__all__ = ["RelationshipBuilder"]
