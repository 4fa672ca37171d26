"""Check engine.

Evaluates "does subject S have relation R on object O?" by depth-first
recursion over an implicit graph of ``(subject, object, relation)`` nodes.
Edges come from stored tuples (subject-set expansion) and from rewrite
operators (same-object relations and follow edges).

Per top-level call the engine keeps a ``_CheckContext`` holding:

    memo      node -> final result, reused for the rest of the call;
              results cut short by max_depth are not stored
    visiting  nodes on the active recursion stack; re-entry is a cycle
    max_depth ceiling on recursive descent

The context is created inside ``check`` and discarded on return; nothing
is cached across calls.

Failure policy:
    - Malformed references and schema lookup misses anywhere in the
      evaluation make the whole check ``False``.
    - Cycles and depth overruns make the affected branch ``False``.
    - Store errors propagate unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rebac.core import (
    CheckRequest,
    MalformedReferenceError,
    SchemaValidationError,
    TupleQuery,
    TupleStore,
    UnknownEntityTypeError,
    UnknownRelationError,
    ValidationResult,
)
from rebac.refs import (
    is_subject_set,
    parse_object_ref,
    parse_subject_set_ref,
)
from rebac.rewrite import (
    DifferenceRewrite,
    FollowRelation,
    IntersectionRewrite,
    Rewrite,
    SameObjectRelation,
    UnionRewrite,
)
from rebac.schema import DirectRelation, Schema

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32

# Evaluation errors that mean "cannot prove membership" rather than an outage.
_DENIAL_ERRORS = (
    MalformedReferenceError,
    UnknownEntityTypeError,
    UnknownRelationError,
    SchemaValidationError,
    RecursionError,
)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class EngineConfig:
    """Configuration for the check engine."""

    # Recursive descents allowed below the top-level node
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")


# =============================================================================
# Request Validation
# =============================================================================


def validate_check_request(
    schema: Schema,
    subject: str,
    object: str,
    relation: str,
) -> ValidationResult:
    """Pre-flight validation of a check request.

    The object's type must exist and declare ``relation``. A subject-set
    subject must reference an existing relation; a plain subject must
    reference an existing entity type.
    """
    result = ValidationResult()

    try:
        obj = parse_object_ref(object)
    except MalformedReferenceError as e:
        result.add_error(f"object: {e}")
    else:
        if not schema.has_entity(obj.type):
            result.add_error(f"object: unknown entity type '{obj.type}'")
        elif not schema.has_relation(obj.type, relation):
            result.add_error(f"relation: unknown relation '{relation}' on type '{obj.type}'")

    try:
        if is_subject_set(subject):
            subject_set = parse_subject_set_ref(subject)
            if not schema.has_entity(subject_set.type):
                result.add_error(f"subject: unknown entity type '{subject_set.type}'")
            elif not schema.has_relation(subject_set.type, subject_set.relation):
                result.add_error(
                    f"subject: unknown relation '{subject_set.relation}' "
                    f"on type '{subject_set.type}'"
                )
        else:
            subject_obj = parse_object_ref(subject)
            if not schema.has_entity(subject_obj.type):
                result.add_error(f"subject: unknown entity type '{subject_obj.type}'")
    except MalformedReferenceError as e:
        result.add_error(f"subject: {e}")

    return result


# =============================================================================
# Check Engine
# =============================================================================


@dataclass
class _CheckContext:
    """State scoped to one top-level check call."""

    max_depth: int
    memo: dict[tuple[str, str, str], bool] = field(default_factory=dict)
    visiting: set[tuple[str, str, str]] = field(default_factory=set)
    # Set when the subtree under evaluation hit the depth ceiling
    truncated: bool = False


class CheckEngine:
    """Recursive relationship check evaluator.

    Example:
        >>> engine = CheckEngine(schema, MemoryTupleStore())
        >>> engine.check("user:alice", "folder:child", "viewer")
        True
    """

    def __init__(
        self,
        schema: Schema,
        store: TupleStore,
        config: EngineConfig | None = None,
    ) -> None:
        self._schema = schema
        self._store = store
        self._config = config or EngineConfig()

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def store(self) -> TupleStore:
        return self._store

    @property
    def config(self) -> EngineConfig:
        return self._config

    def check(self, subject: str, object: str, relation: str) -> bool:
        """Evaluate a check; never raises for request or schema problems.

        Store errors are not caught.
        """
        validation = validate_check_request(self._schema, subject, object, relation)
        if not validation.valid:
            logger.debug(f"Check rejected ({subject} {relation} {object}): {validation.errors}")
            return False

        ctx = _CheckContext(max_depth=self._config.max_depth)
        try:
            allowed = self._check_node(ctx, subject, object, relation, 0)
        except _DENIAL_ERRORS as e:
            logger.debug(f"Check degraded to deny ({subject} {relation} {object}): {e}")
            return False

        logger.debug(
            f"Check {subject} {relation} {object} -> {allowed} "
            f"({len(ctx.memo)} nodes evaluated)"
        )
        return allowed

    def check_request(self, request: CheckRequest) -> bool:
        return self.check(request.subject, request.object, request.relation)

    # -------------------------------------------------------------------------
    # Node evaluation
    # -------------------------------------------------------------------------

    def _check_node(
        self,
        ctx: _CheckContext,
        subject: str,
        object: str,
        relation: str,
        depth: int,
    ) -> bool:
        if depth > ctx.max_depth:
            ctx.truncated = True
            return False

        key = (subject, object, relation)
        if key in ctx.memo:
            return ctx.memo[key]
        if key in ctx.visiting:
            # Cycle: non-membership along this path
            return False

        outer_truncated = ctx.truncated
        ctx.truncated = False
        ctx.visiting.add(key)
        try:
            obj = parse_object_ref(object)
            rel_def = self._schema.get_relation(obj.type, relation)

            if isinstance(rel_def, DirectRelation):
                result = self._check_direct(ctx, subject, object, relation, depth)
            else:
                result = self._eval_rewrite(ctx, rel_def.rewrite, subject, object, depth)
        finally:
            ctx.visiting.discard(key)

        # A result cut short by the depth ceiling only holds at this depth
        if not ctx.truncated:
            ctx.memo[key] = result
        ctx.truncated = ctx.truncated or outer_truncated
        return result

    def _check_direct(
        self,
        ctx: _CheckContext,
        subject: str,
        object: str,
        relation: str,
        depth: int,
    ) -> bool:
        tuples = self._store.query(TupleQuery(object=object, relation=relation))

        for t in tuples:
            if t.subject == subject:
                return True

        for t in tuples:
            if is_subject_set(t.subject):
                subject_set = parse_subject_set_ref(t.subject)
                if self._check_node(
                    ctx, subject, subject_set.object, subject_set.relation, depth + 1
                ):
                    return True

        return False

    def _eval_rewrite(
        self,
        ctx: _CheckContext,
        rewrite: Rewrite,
        subject: str,
        object: str,
        depth: int,
    ) -> bool:
        if isinstance(rewrite, SameObjectRelation):
            return self._check_node(ctx, subject, object, rewrite.relation, depth + 1)

        if isinstance(rewrite, FollowRelation):
            tuples = self._store.query(TupleQuery(object=object, relation=rewrite.through))
            for t in tuples:
                if is_subject_set(t.subject):
                    # Only object refs are followed
                    continue
                if self._check_node(ctx, subject, t.subject, rewrite.relation, depth + 1):
                    return True
            return False

        if isinstance(rewrite, UnionRewrite):
            return any(
                self._eval_rewrite(ctx, child, subject, object, depth + 1)
                for child in rewrite.children
            )

        if isinstance(rewrite, IntersectionRewrite):
            return all(
                self._eval_rewrite(ctx, child, subject, object, depth + 1)
                for child in rewrite.children
            )

        if isinstance(rewrite, DifferenceRewrite):
            if not self._eval_rewrite(ctx, rewrite.base, subject, object, depth + 1):
                return False
            return not any(
                self._eval_rewrite(ctx, child, subject, object, depth + 1)
                for child in rewrite.subtract
            )

        raise SchemaValidationError([f"unknown rewrite operator {type(rewrite).__name__}"])
