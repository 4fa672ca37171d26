"""Core types and interfaces for relationship-based access control.

This module provides the foundational types shared by every other part of
the package: the exception taxonomy, the relationship tuple, the tuple query
filter, validation results, and the abstract tuple store interface.

Design Principles:
    - Fail closed: checks never raise, uncertainty is treated as denial
    - Loud configuration: schema and write errors always surface
    - Narrow storage contract: stores only write, delete and query tuples
    - Immutability: tuples and queries are frozen value objects
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence


# =============================================================================
# Exceptions
# =============================================================================


class RebacError(Exception):
    """Base exception for ReBAC-related errors."""
    pass


class MalformedReferenceError(RebacError):
    """Raised when a string is not a valid object or subject-set reference."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        self.reference = reference
        super().__init__(message)


class UnknownEntityTypeError(RebacError):
    """Raised when an entity type is not declared in the schema."""

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type '{entity_type}'")


class UnknownRelationError(RebacError):
    """Raised when an entity type does not declare a relation."""

    def __init__(self, entity_type: str, relation: str) -> None:
        self.entity_type = entity_type
        self.relation = relation
        super().__init__(f"Unknown relation '{relation}' on type '{entity_type}'")


class SchemaValidationError(RebacError):
    """Raised when a schema fails structural validation."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        details = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Invalid schema:\n{details}")


class DerivedRelationWriteError(RebacError):
    """Raised when a tuple targets a derived (computed) relation."""

    def __init__(self, entity_type: str, relation: str) -> None:
        self.entity_type = entity_type
        self.relation = relation
        super().__init__(
            f"Cannot write tuple for derived relation '{entity_type}.{relation}'. "
            "Only direct relations are stored."
        )


class DisallowedSubjectError(RebacError):
    """Raised when a tuple's subject is not allowed by the relation."""

    def __init__(
        self,
        message: str,
        subject: str | None = None,
        allowed: Sequence[str] = (),
    ) -> None:
        self.subject = subject
        self.allowed = tuple(allowed)
        super().__init__(message)


class TupleStoreError(RebacError):
    """Raised by tuple stores on I/O failure or corrupted data.

    Store errors are never converted into a denied check.
    """
    pass


# =============================================================================
# Core Data Types
# =============================================================================


@dataclass(frozen=True)
class RelationTuple:
    """A stored relationship fact: ``subject`` has ``relation`` on ``object``.

    Example:
        >>> t = RelationTuple(object="doc:1", relation="viewer", subject="user:alice")
        >>> t.to_dict()
        {'object': 'doc:1', 'relation': 'viewer', 'subject': 'user:alice'}
    """

    object: str
    relation: str
    subject: str

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of the tuple inside a store."""
        return (self.object, self.relation, self.subject)

    def __str__(self) -> str:
        return f"{self.object}#{self.relation}@{self.subject}"

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {
            "object": self.object,
            "relation": self.relation,
            "subject": self.subject,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelationTuple":
        """Create from dictionary."""
        try:
            return cls(
                object=str(data["object"]),
                relation=str(data["relation"]),
                subject=str(data["subject"]),
            )
        except KeyError as e:
            raise ValueError(f"Tuple is missing field {e.args[0]!r}: {dict(data)}") from e

    @classmethod
    def coerce(cls, value: "RelationTuple | Mapping[str, Any]") -> "RelationTuple":
        """Accept either a tuple instance or a mapping."""
        if isinstance(value, RelationTuple):
            return value
        return cls.from_dict(value)


@dataclass(frozen=True)
class TupleQuery:
    """Filter for tuple queries.

    Every field that is set must match exactly; ``None`` matches anything.

    Example:
        >>> TupleQuery(object="doc:1", relation="viewer")
    """

    object: str | None = None
    relation: str | None = None
    subject: str | None = None

    def matches(self, t: RelationTuple) -> bool:
        """Check whether a tuple satisfies the filter."""
        if self.object is not None and t.object != self.object:
            return False
        if self.relation is not None and t.relation != self.relation:
            return False
        if self.subject is not None and t.subject != self.subject:
            return False
        return True


@dataclass(frozen=True)
class CheckRequest:
    """Does ``subject`` have ``relation`` on ``object``?"""

    subject: str
    object: str
    relation: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {
            "subject": self.subject,
            "object": self.object,
            "relation": self.relation,
        }


@dataclass
class ValidationResult:
    """Outcome of a schema or request validation.

    Example:
        >>> result = ValidationResult()
        >>> result.add_error("rewrite 'doc.viewer': unknown relation")
        >>> result.valid
        False
    """

    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"valid": self.valid, "errors": list(self.errors)}


# =============================================================================
# Interfaces (Abstract Base Classes)
# =============================================================================


class TupleStore(ABC):
    """Abstract interface for relationship tuple storage.

    The store solely owns tuple persistence. Implementations must be
    idempotent on write (upsert by ``(object, relation, subject)``), treat
    deleting a missing tuple as a no-op, and return independent objects from
    ``query``. Failures are raised as exceptions (``TupleStoreError`` for
    I/O and corruption); they are never reported as empty results.
    """

    @abstractmethod
    def write(self, tuples: Iterable[RelationTuple]) -> None:
        """Upsert tuples."""
        ...

    @abstractmethod
    def delete(self, tuples: Iterable[RelationTuple]) -> None:
        """Remove matching tuples."""
        ...

    @abstractmethod
    def query(self, query: TupleQuery) -> list[RelationTuple]:
        """Return every tuple matching the filter."""
        ...

    def close(self) -> None:
        """Release any resources held by the store."""
        return None
