"""Relation graph and relation loading."""

from crudable.relations.graph import (
    RelationGraphCache,
    RelationGraphResolver,
    RelationInfo,
    TableRelations,
)
from crudable.relations.loader import OmissionReason, RelationLoader, RelationLoadResult

__all__ = [
    "OmissionReason",
    "RelationGraphCache",
    "RelationGraphResolver",
    "RelationInfo",
    "RelationLoadResult",
    "RelationLoader",
    "TableRelations",
]
