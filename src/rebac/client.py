"""ReBAC client facade.

The client ties a validated schema to a tuple store. It validates every
write against the schema before the store sees it, and delegates checks
to the ``CheckEngine``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Union

from rebac.core import (
    CheckRequest,
    DerivedRelationWriteError,
    DisallowedSubjectError,
    RelationTuple,
    TupleQuery,
    TupleStore,
    ValidationResult,
)
from rebac.engine import DEFAULT_MAX_DEPTH, CheckEngine, EngineConfig, validate_check_request
from rebac.refs import is_subject_set, parse_object_ref, parse_subject_set_ref
from rebac.schema import DirectRelation, Schema

logger = logging.getLogger(__name__)

TupleLike = Union[RelationTuple, Mapping[str, Any]]


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class RebacClientConfig:
    """Configuration for the ReBAC client."""

    # Check evaluation
    max_depth: int = DEFAULT_MAX_DEPTH

    # Apply write validation rules to deletes as well
    validate_deletes: bool = True

    # Lifecycle hooks, called after the operation succeeded
    on_write: list[Callable[[list[RelationTuple]], None]] = field(default_factory=list)
    on_delete: list[Callable[[list[RelationTuple]], None]] = field(default_factory=list)
    on_check: list[Callable[[CheckRequest, bool], None]] = field(default_factory=list)


# =============================================================================
# Client
# =============================================================================


class RebacClient:
    """High-level API for writing tuples and evaluating checks.

    Example:
        >>> client = RebacClient(schema, MemoryTupleStore())
        >>> client.write([
        ...     {"object": "folder:root", "relation": "owner", "subject": "user:alice"},
        ... ])
        >>> client.check("user:alice", "folder:root", "viewer")
        True
    """

    def __init__(
        self,
        schema: Schema,
        store: TupleStore,
        config: RebacClientConfig | None = None,
    ) -> None:
        self._schema = schema
        self._store = store
        self._config = config or RebacClientConfig()
        self._engine = CheckEngine(
            schema,
            store,
            config=EngineConfig(max_depth=self._config.max_depth),
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def store(self) -> TupleStore:
        return self._store

    @property
    def engine(self) -> CheckEngine:
        return self._engine

    @property
    def config(self) -> RebacClientConfig:
        return self._config

    # =========================================================================
    # Checks
    # =========================================================================

    def check(self, subject: str, object: str, relation: str) -> bool:
        """Evaluate whether ``subject`` has ``relation`` on ``object``.

        Never raises for malformed or unknown requests (they are denied);
        store errors propagate.

        Example:
            >>> client.check("user:alice", "doc:1", "viewer")
        """
        allowed = self._engine.check(subject, object, relation)
        if self._config.on_check:
            request = CheckRequest(subject=subject, object=object, relation=relation)
            self._run_hooks(self._config.on_check, request, allowed)
        return allowed

    def check_request(self, request: CheckRequest) -> bool:
        return self.check(request.subject, request.object, request.relation)

    def validate_check(self, subject: str, object: str, relation: str) -> ValidationResult:
        """Validate a check request and return explicit errors."""
        return validate_check_request(self._schema, subject, object, relation)

    # =========================================================================
    # Tuple Management
    # =========================================================================

    def write(self, tuples: Iterable[TupleLike]) -> None:
        """Write direct relation tuples after schema validation.

        The whole batch is validated before the store is called; one bad
        tuple aborts the batch.

        Raises:
            MalformedReferenceError: If an object or subject ref is malformed.
            UnknownEntityTypeError: If the object type is not declared.
            UnknownRelationError: If the relation is not declared.
            DerivedRelationWriteError: If the relation is derived.
            DisallowedSubjectError: If the subject is not in the allowed list.
        """
        batch = [RelationTuple.coerce(t) for t in tuples]
        for t in batch:
            self.validate_tuple(t)

        self._store.write(batch)
        logger.info(f"Wrote {len(batch)} tuples")
        self._run_hooks(self._config.on_write, batch)

    def delete(self, tuples: Iterable[TupleLike]) -> None:
        """Delete tuples from the store.

        Validated like ``write`` unless ``validate_deletes`` is disabled.
        """
        batch = [RelationTuple.coerce(t) for t in tuples]
        if self._config.validate_deletes:
            for t in batch:
                self.validate_tuple(t)

        self._store.delete(batch)
        logger.info(f"Deleted {len(batch)} tuples")
        self._run_hooks(self._config.on_delete, batch)

    def read(
        self,
        object: str | None = None,
        relation: str | None = None,
        subject: str | None = None,
    ) -> list[RelationTuple]:
        """Query stored tuples; unset filters match anything."""
        return self._store.query(TupleQuery(object=object, relation=relation, subject=subject))

    def validate_tuple(self, t: RelationTuple) -> None:
        """Validate one tuple against the schema, raising on the first problem."""
        object_type = parse_object_ref(t.object).type
        rel_def = self._schema.get_relation(object_type, t.relation)

        if not isinstance(rel_def, DirectRelation):
            raise DerivedRelationWriteError(object_type, t.relation)

        allowed_list = ", ".join(rel_def.allowed)
        if is_subject_set(t.subject):
            token = parse_subject_set_ref(t.subject).token
            if token not in rel_def.allowed:
                raise DisallowedSubjectError(
                    f"Subject set '{token}' not allowed for '{object_type}.{t.relation}'. "
                    f"Allowed: {allowed_list}",
                    subject=t.subject,
                    allowed=rel_def.allowed,
                )
        else:
            subject_type = parse_object_ref(t.subject).type
            if subject_type not in rel_def.allowed:
                raise DisallowedSubjectError(
                    f"Subject type '{subject_type}' not allowed for "
                    f"'{object_type}.{t.relation}'. Allowed: {allowed_list}",
                    subject=t.subject,
                    allowed=rel_def.allowed,
                )

    # =========================================================================
    # Internal
    # =========================================================================

    def _run_hooks(self, hooks: list[Callable[..., None]], *args: Any) -> None:
        for hook in hooks:
            try:
                hook(*args)
            except Exception as e:
                logger.warning(f"Error in client hook {getattr(hook, '__name__', hook)!r}: {e}")
