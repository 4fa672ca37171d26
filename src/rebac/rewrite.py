"""Rewrite expressions for derived relations.

A derived relation is computed from other relations by a small, closed
set-algebra:

    sameObjectRelation(r)          r on the same object
    followRelation(through, r)     r on every object reached via ``through``
    union(children...)             any child
    intersection(children...)      every child
    difference(base, subtract...)  base and no subtract child

Each operator is a frozen dataclass. The set of operators is closed:
evaluators and validators dispatch on exactly these five classes.

Example:
    >>> viewer = union(
    ...     same_object_relation("owner"),
    ...     follow_relation(through="parent", relation="viewer"),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Union


@dataclass(frozen=True)
class SameObjectRelation:
    """Re-evaluate another relation on the same object."""

    op: ClassVar[str] = "sameObjectRelation"

    relation: str


@dataclass(frozen=True)
class FollowRelation:
    """Follow ``through`` to target objects and evaluate ``relation`` there."""

    op: ClassVar[str] = "followRelation"

    through: str
    relation: str


@dataclass(frozen=True)
class UnionRewrite:
    """True when any child is true."""

    op: ClassVar[str] = "union"

    children: tuple["Rewrite", ...] = ()


@dataclass(frozen=True)
class IntersectionRewrite:
    """True when every child is true."""

    op: ClassVar[str] = "intersection"

    children: tuple["Rewrite", ...] = ()


@dataclass(frozen=True)
class DifferenceRewrite:
    """True when ``base`` is true and no ``subtract`` child is."""

    op: ClassVar[str] = "difference"

    base: "Rewrite"
    subtract: tuple["Rewrite", ...] = ()


Rewrite = Union[
    SameObjectRelation,
    FollowRelation,
    UnionRewrite,
    IntersectionRewrite,
    DifferenceRewrite,
]

REWRITE_TYPES: tuple[type, ...] = (
    SameObjectRelation,
    FollowRelation,
    UnionRewrite,
    IntersectionRewrite,
    DifferenceRewrite,
)


# =============================================================================
# Builders
# =============================================================================


def same_object_relation(relation: str) -> SameObjectRelation:
    """Reuse another relation on the same object.

    Example:
        >>> owner_can_view = same_object_relation("owner")
    """
    return SameObjectRelation(relation=relation)


def follow_relation(through: str, relation: str) -> FollowRelation:
    """Follow a relation to another object, then check a relation there.

    Example:
        >>> inherited = follow_relation(through="parent", relation="viewer")
    """
    return FollowRelation(through=through, relation=relation)


def union(*children: Rewrite) -> UnionRewrite:
    return UnionRewrite(children=tuple(children))


def intersection(*children: Rewrite) -> IntersectionRewrite:
    return IntersectionRewrite(children=tuple(children))


def difference(base: Rewrite, *subtract: Rewrite) -> DifferenceRewrite:
    """``base`` minus every ``subtract`` expression.

    Example:
        >>> visible = difference(same_object_relation("viewer"), same_object_relation("banned"))
    """
    return DifferenceRewrite(base=base, subtract=tuple(subtract))


# =============================================================================
# Serialization
# =============================================================================


def rewrite_to_dict(rewrite: Rewrite) -> dict[str, Any]:
    """Convert a rewrite tree to plain dictionaries."""
    if isinstance(rewrite, SameObjectRelation):
        return {"op": rewrite.op, "relation": rewrite.relation}
    if isinstance(rewrite, FollowRelation):
        return {"op": rewrite.op, "through": rewrite.through, "relation": rewrite.relation}
    if isinstance(rewrite, (UnionRewrite, IntersectionRewrite)):
        return {"op": rewrite.op, "children": [rewrite_to_dict(c) for c in rewrite.children]}
    if isinstance(rewrite, DifferenceRewrite):
        return {
            "op": rewrite.op,
            "base": rewrite_to_dict(rewrite.base),
            "subtract": [rewrite_to_dict(s) for s in rewrite.subtract],
        }
    raise TypeError(f"Unknown rewrite operator: {rewrite!r}")


def rewrite_from_dict(data: Mapping[str, Any]) -> Rewrite:
    """Build a rewrite tree from dictionaries produced by ``rewrite_to_dict``.

    Raises:
        ValueError: If an operator is unknown or a required field is missing.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"Rewrite must be a mapping, got {type(data).__name__}")

    op = data.get("op")
    try:
        if op == SameObjectRelation.op:
            return SameObjectRelation(relation=str(data["relation"]))
        if op == FollowRelation.op:
            return FollowRelation(through=str(data["through"]), relation=str(data["relation"]))
        if op == UnionRewrite.op:
            return UnionRewrite(children=_operands(data, "children"))
        if op == IntersectionRewrite.op:
            return IntersectionRewrite(children=_operands(data, "children"))
        if op == DifferenceRewrite.op:
            return DifferenceRewrite(
                base=rewrite_from_dict(data["base"]),
                subtract=_operands(data, "subtract"),
            )
    except KeyError as e:
        raise ValueError(f"Rewrite '{op}' is missing field {e.args[0]!r}") from e

    raise ValueError(f"Unknown rewrite operator: {op!r}")


def _operands(data: Mapping[str, Any], key: str) -> tuple[Rewrite, ...]:
    # A bare "children:" in YAML loads as None
    items = data.get(key) or []
    if not isinstance(items, (list, tuple)):
        raise ValueError(f"Rewrite '{data.get('op')}' field {key!r} must be a list")
    return tuple(rewrite_from_dict(item) for item in items)
