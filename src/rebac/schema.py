"""Schema model and static validator.

A schema is an immutable, name-keyed mapping from entity type to entity
definition. Each entity declares relations that are either *direct* (stored
as tuples, with a list of allowed subject descriptors) or *derived*
(computed from a rewrite expression).

Validation is a two-pass process: entity and relation names are collected
from the mapping keys, then every reference (allowed subject descriptors,
rewrite operands) is resolved against them. Because entities are addressed
by name there is no forward-declaration problem.

Example:
    >>> schema = define_schema({
    ...     "user": entity(),
    ...     "folder": entity(relations={
    ...         "owner": relation(allowed=["user"]),
    ...         "parent": relation(allowed=["folder"]),
    ...         "viewer": derived(union(
    ...             same_object_relation("owner"),
    ...             follow_relation(through="parent", relation="viewer"),
    ...         )),
    ...     }),
    ... })
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Iterable, Mapping, Union

from rebac.core import (
    SchemaValidationError,
    UnknownEntityTypeError,
    UnknownRelationError,
    ValidationResult,
)
from rebac.refs import RELATION_DELIMITER, is_valid_name
from rebac.rewrite import (
    DifferenceRewrite,
    FollowRelation,
    IntersectionRewrite,
    Rewrite,
    SameObjectRelation,
    UnionRewrite,
    rewrite_from_dict,
    rewrite_to_dict,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Relation Definitions
# =============================================================================


class RelationKind(Enum):
    """How a relation's membership is determined."""

    DIRECT = "direct"  # Stored tuples plus subject-set expansion
    DERIVED = "derived"  # Computed from a rewrite expression


@dataclass(frozen=True)
class DirectRelation:
    """A stored relation.

    ``allowed`` lists the subject descriptors a tuple may carry: a plain
    entity type (``"user"``) or a subject-set descriptor (``"group#member"``).
    """

    kind: ClassVar[RelationKind] = RelationKind.DIRECT

    allowed: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.allowed, str):
            object.__setattr__(self, "allowed", (self.allowed,))
        else:
            object.__setattr__(self, "allowed", tuple(self.allowed))

    @property
    def subject_set_descriptors(self) -> tuple[str, ...]:
        return tuple(a for a in self.allowed if RELATION_DELIMITER in a)

    @property
    def allows_subject_sets(self) -> bool:
        return bool(self.subject_set_descriptors)


@dataclass(frozen=True)
class DerivedRelation:
    """A computed relation; no tuples are ever stored for it."""

    kind: ClassVar[RelationKind] = RelationKind.DERIVED

    rewrite: Rewrite


RelationDef = Union[DirectRelation, DerivedRelation]


@dataclass(frozen=True)
class EntityDef:
    """An entity type and its relations.

    ``type`` may be left empty when the entity is passed to
    ``define_schema`` under a key; the key then becomes the type name.
    """

    type: str = ""
    relations: Mapping[str, RelationDef] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "relations", MappingProxyType(dict(self.relations)))

    def get_relation(self, name: str) -> RelationDef:
        rel = self.relations.get(name)
        if rel is None:
            raise UnknownRelationError(self.type, name)
        return rel

    def has_relation(self, name: str) -> bool:
        return name in self.relations


# =============================================================================
# Builders
# =============================================================================


def entity(
    type: str = "",
    relations: Mapping[str, RelationDef] | None = None,
) -> EntityDef:
    """Declare an entity type."""
    return EntityDef(type=type, relations=relations or {})


def relation(allowed: Iterable[str]) -> DirectRelation:
    """Declare a direct relation.

    Example:
        >>> editor = relation(allowed=["user", "group#member"])
    """
    return DirectRelation(allowed=tuple(allowed))


def derived(rewrite: Rewrite) -> DerivedRelation:
    """Declare a derived relation."""
    return DerivedRelation(rewrite=rewrite)


# =============================================================================
# Schema
# =============================================================================


@dataclass(frozen=True)
class Schema:
    """Immutable mapping from entity type name to entity definition."""

    entities: Mapping[str, EntityDef] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))

    @property
    def entity_types(self) -> list[str]:
        return list(self.entities)

    def has_entity(self, type: str) -> bool:
        return type in self.entities

    def has_relation(self, type: str, relation: str) -> bool:
        ent = self.entities.get(type)
        return ent is not None and relation in ent.relations

    def get_entity(self, type: str) -> EntityDef:
        """Get an entity definition.

        Raises:
            UnknownEntityTypeError: If the type is not declared.
        """
        ent = self.entities.get(type)
        if ent is None:
            raise UnknownEntityTypeError(type)
        return ent

    def get_relation(self, type: str, relation: str) -> RelationDef:
        """Get a relation definition.

        Raises:
            UnknownEntityTypeError: If the type is not declared.
            UnknownRelationError: If the type does not declare the relation.
        """
        return self.get_entity(type).get_relation(relation)

    def validate(self) -> ValidationResult:
        return validate_schema(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain dictionaries (the schema file format)."""
        entities: dict[str, Any] = {}
        for type_name, ent in self.entities.items():
            relations: dict[str, Any] = {}
            for rel_name, rel_def in ent.relations.items():
                if isinstance(rel_def, DirectRelation):
                    relations[rel_name] = {
                        "kind": RelationKind.DIRECT.value,
                        "allowed": list(rel_def.allowed),
                    }
                else:
                    relations[rel_name] = {
                        "kind": RelationKind.DERIVED.value,
                        "rewrite": rewrite_to_dict(rel_def.rewrite),
                    }
            entities[type_name] = {"relations": relations}
        return {"entities": entities}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], validate: bool = True) -> "Schema":
        """Create from dictionaries.

        Raises:
            SchemaValidationError: If the document is malformed, or if
                ``validate`` is set and the schema is structurally invalid.
        """
        errors: list[str] = []
        raw_entities = data.get("entities") if isinstance(data, Mapping) else None
        if not isinstance(raw_entities, Mapping):
            raise SchemaValidationError(["schema document must contain an 'entities' mapping"])

        entities: dict[str, EntityDef] = {}
        for type_name, raw_entity in raw_entities.items():
            raw_entity = raw_entity or {}
            if not isinstance(raw_entity, Mapping):
                errors.append(f"entity '{type_name}': definition must be a mapping")
                continue
            raw_relations = raw_entity.get("relations") or {}
            if not isinstance(raw_relations, Mapping):
                errors.append(f"entity '{type_name}': 'relations' must be a mapping")
                continue

            relations: dict[str, RelationDef] = {}
            for rel_name, raw_rel in raw_relations.items():
                try:
                    relations[rel_name] = _relation_from_dict(raw_rel)
                except ValueError as e:
                    errors.append(f"relation '{type_name}.{rel_name}': {e}")
            entities[type_name] = EntityDef(type=type_name, relations=relations)

        if errors:
            raise SchemaValidationError(errors)
        return define_schema(entities, validate=validate)


def _relation_from_dict(data: Any) -> RelationDef:
    if not isinstance(data, Mapping):
        raise ValueError("relation must be a mapping")

    kind = data.get("kind")
    if kind is None:
        kind = RelationKind.DERIVED.value if "rewrite" in data else RelationKind.DIRECT.value

    if kind == RelationKind.DIRECT.value:
        allowed = data.get("allowed", [])
        if isinstance(allowed, str) or not isinstance(allowed, Iterable):
            raise ValueError("'allowed' must be a list of subject descriptors")
        return DirectRelation(allowed=tuple(str(a) for a in allowed))
    if kind == RelationKind.DERIVED.value:
        if "rewrite" not in data:
            raise ValueError("derived relation requires a 'rewrite'")
        return DerivedRelation(rewrite=rewrite_from_dict(data["rewrite"]))

    raise ValueError(f"unknown relation kind {kind!r}")


def define_schema(
    entities: Mapping[str, EntityDef] | Iterable[EntityDef],
    validate: bool = True,
) -> Schema:
    """Build a schema and validate it eagerly.

    Args:
        entities: Entity definitions keyed by type name, or an iterable of
            entity definitions carrying their own ``type``. An explicit
            ``type`` on a definition wins over its key.
        validate: When False, return the unchecked schema.

    Raises:
        SchemaValidationError: If validation is enabled and fails. All
            errors are reported together.
    """
    if isinstance(entities, Mapping):
        items = list(entities.items())
    else:
        items = [(e.type, e) for e in entities]

    resolved: dict[str, EntityDef] = {}
    for key, ent in items:
        type_name = ent.type or key
        if ent.type != type_name:
            ent = replace(ent, type=type_name)
        resolved[type_name] = ent

    schema = Schema(entities=resolved)

    if validate:
        result = validate_schema(schema)
        if not result.valid:
            raise SchemaValidationError(result.errors)
        logger.debug(f"Schema validated: {len(resolved)} entity types")

    return schema


# =============================================================================
# Validator
# =============================================================================


_NAME_RULE = "must be non-empty and must not contain ':' or '#'"


def validate_schema(schema: Schema) -> ValidationResult:
    """Check every name and reference in the schema.

    Returns a result whose errors are ordered by entity, then relation,
    then rewrite pre-order; each error is prefixed with its path, e.g.
    ``rewrite 'doc.viewer'.union[1]``.
    """
    result = ValidationResult()

    for type_name, ent in schema.entities.items():
        if not is_valid_name(type_name):
            result.add_error(f"entity '{type_name}': invalid name ({_NAME_RULE})")

        for rel_name, rel_def in ent.relations.items():
            if not is_valid_name(rel_name):
                result.add_error(
                    f"entity '{type_name}': invalid relation name '{rel_name}' ({_NAME_RULE})"
                )

            if isinstance(rel_def, DirectRelation):
                _validate_direct(schema, type_name, rel_name, rel_def, result)
            elif isinstance(rel_def, DerivedRelation):
                _validate_rewrite(
                    schema, type_name, rel_def.rewrite, f"rewrite '{type_name}.{rel_name}'", result
                )
            else:
                result.add_error(
                    f"relation '{type_name}.{rel_name}': unknown relation kind "
                    f"{type(rel_def).__name__}"
                )

    return result


def _validate_direct(
    schema: Schema,
    type_name: str,
    rel_name: str,
    rel_def: DirectRelation,
    result: ValidationResult,
) -> None:
    path = f"relation '{type_name}.{rel_name}'"

    for token in rel_def.allowed:
        if RELATION_DELIMITER in token:
            parts = token.split(RELATION_DELIMITER)
            if len(parts) != 2 or not all(is_valid_name(p) for p in parts):
                result.add_error(f"{path}: invalid allowed subject '{token}'")
                continue
            subject_type, subject_rel = parts
            target = schema.entities.get(subject_type)
            if target is None:
                result.add_error(f"{path}: unknown subject set type '{subject_type}' in '{token}'")
            elif subject_rel not in target.relations:
                result.add_error(
                    f"{path}: unknown relation '{subject_rel}' on subject set type "
                    f"'{subject_type}' in '{token}'"
                )
        elif not is_valid_name(token):
            result.add_error(f"{path}: invalid allowed subject '{token}'")
        elif token not in schema.entities:
            result.add_error(f"{path}: unknown subject type '{token}'")


def _validate_rewrite(
    schema: Schema,
    type_name: str,
    rewrite: Rewrite,
    path: str,
    result: ValidationResult,
) -> None:
    relations = schema.entities[type_name].relations

    if isinstance(rewrite, SameObjectRelation):
        if rewrite.relation not in relations:
            result.add_error(
                f"{path}: sameObjectRelation references unknown relation "
                f"'{rewrite.relation}' on type '{type_name}'"
            )

    elif isinstance(rewrite, FollowRelation):
        through = relations.get(rewrite.through)
        if through is None:
            result.add_error(
                f"{path}: followRelation through unknown relation "
                f"'{rewrite.through}' on type '{type_name}'"
            )
            return
        if not isinstance(through, DirectRelation):
            result.add_error(
                f"{path}: followRelation through '{type_name}.{rewrite.through}' must be direct"
            )
            return
        for token in through.allowed:
            if RELATION_DELIMITER in token:
                result.add_error(
                    f"{path}: through relation '{type_name}.{rewrite.through}' allows "
                    f"subject set '{token}'; followRelation only follows object refs"
                )
                continue
            target = schema.entities.get(token)
            if target is None:
                result.add_error(f"{path}: followRelation target type '{token}' is unknown")
            elif rewrite.relation not in target.relations:
                result.add_error(
                    f"{path}: followRelation target type '{token}' has no relation "
                    f"'{rewrite.relation}'"
                )

    elif isinstance(rewrite, (UnionRewrite, IntersectionRewrite)):
        for i, child in enumerate(rewrite.children):
            _validate_rewrite(schema, type_name, child, f"{path}.{rewrite.op}[{i}]", result)

    elif isinstance(rewrite, DifferenceRewrite):
        _validate_rewrite(schema, type_name, rewrite.base, f"{path}.difference.base", result)
        for i, child in enumerate(rewrite.subtract):
            _validate_rewrite(
                schema, type_name, child, f"{path}.difference.subtract[{i}]", result
            )

    else:
        result.add_error(f"{path}: unknown rewrite operator {type(rewrite).__name__}")
