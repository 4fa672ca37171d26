"""Reference codec for object and subject-set references.

Grammar::

    object-ref      := TYPE ":" ID
    subject-set-ref := TYPE ":" ID "#" RELATION

TYPE, ID and RELATION are non-empty; TYPE and RELATION exclude ``:`` and
``#``. The id is everything after the first ``:``.
"""

from __future__ import annotations

from typing import NamedTuple

from rebac.core import MalformedReferenceError

TYPE_DELIMITER = ":"
RELATION_DELIMITER = "#"
RESERVED_DELIMITERS = (TYPE_DELIMITER, RELATION_DELIMITER)


class ObjectRef(NamedTuple):
    """Parsed ``type:id`` reference."""

    type: str
    id: str

    def __str__(self) -> str:
        return f"{self.type}{TYPE_DELIMITER}{self.id}"


class SubjectSetRef(NamedTuple):
    """Parsed ``type:id#relation`` reference."""

    type: str
    id: str
    relation: str

    @property
    def object(self) -> str:
        """The object reference part (``type:id``)."""
        return f"{self.type}{TYPE_DELIMITER}{self.id}"

    @property
    def token(self) -> str:
        """Descriptor used in allowed-subject lists (``type#relation``)."""
        return f"{self.type}{RELATION_DELIMITER}{self.relation}"

    def __str__(self) -> str:
        return f"{self.object}{RELATION_DELIMITER}{self.relation}"


def is_valid_name(name: str) -> bool:
    """Check that an entity or relation name is usable in references."""
    if not isinstance(name, str) or not name:
        return False
    return not any(d in name for d in RESERVED_DELIMITERS)


def object_ref(type: str, id: str) -> str:
    """Build an object reference.

    Example:
        >>> object_ref("user", "alice")
        'user:alice'
    """
    if not is_valid_name(type):
        raise MalformedReferenceError(f"Invalid object type: {type!r}", reference=type)
    if not id:
        raise MalformedReferenceError(f"Empty object id for type {type!r}", reference=type)
    if RELATION_DELIMITER in id:
        raise MalformedReferenceError(
            f"Object id {id!r} must not contain '#'", reference=f"{type}{TYPE_DELIMITER}{id}"
        )
    return f"{type}{TYPE_DELIMITER}{id}"


def subject_set_ref(type: str, id: str, relation: str) -> str:
    """Build a subject-set reference.

    Example:
        >>> subject_set_ref("group", "eng", "member")
        'group:eng#member'
    """
    base = object_ref(type, id)
    if not is_valid_name(relation):
        raise MalformedReferenceError(
            f"Invalid subject-set relation: {relation!r}", reference=base
        )
    return f"{base}{RELATION_DELIMITER}{relation}"


def is_subject_set(ref: str) -> bool:
    """Return True when ``ref`` is in subject-set form."""
    return isinstance(ref, str) and RELATION_DELIMITER in ref


def parse_object_ref(ref: str) -> ObjectRef:
    """Parse ``type:id``.

    Raises:
        MalformedReferenceError: If there is no ``:`` after a non-empty type,
            the id is empty, or either part contains ``#``.
    """
    if not isinstance(ref, str):
        raise MalformedReferenceError(f"Invalid object ref: {ref!r}")
    idx = ref.find(TYPE_DELIMITER)
    if idx <= 0:
        raise MalformedReferenceError(f"Invalid object ref: {ref}", reference=ref)
    type_, id_ = ref[:idx], ref[idx + 1:]
    if RELATION_DELIMITER in type_:
        raise MalformedReferenceError(f"Invalid object ref: {ref}", reference=ref)
    if not id_:
        raise MalformedReferenceError(f"Invalid object ref (empty id): {ref}", reference=ref)
    if RELATION_DELIMITER in id_:
        raise MalformedReferenceError(f"Invalid object ref ('#' in id): {ref}", reference=ref)
    return ObjectRef(type_, id_)


def parse_subject_set_ref(ref: str) -> SubjectSetRef:
    """Parse ``type:id#relation``.

    Raises:
        MalformedReferenceError: If there is not exactly one ``#``, the
            relation is empty or contains ``:``, or the prefix is not a valid
            object reference.
    """
    if not isinstance(ref, str) or ref.count(RELATION_DELIMITER) != 1:
        raise MalformedReferenceError(f"Invalid subject-set ref: {ref}", reference=ref)
    base, relation = ref.split(RELATION_DELIMITER, 1)
    if not relation or TYPE_DELIMITER in relation:
        raise MalformedReferenceError(f"Invalid subject-set ref: {ref}", reference=ref)
    parsed = parse_object_ref(base)
    return SubjectSetRef(parsed.type, parsed.id, relation)


def parse_subject_ref(ref: str) -> ObjectRef | SubjectSetRef:
    """Parse either reference form."""
    if is_subject_set(ref):
        return parse_subject_set_ref(ref)
    return parse_object_ref(ref)
