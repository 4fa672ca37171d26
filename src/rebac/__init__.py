"""Relationship-Based Access Control (ReBAC) for Python.

This package answers "does subject S have relation R on object O?" from a
schema of entity types and relations plus a store of relationship tuples,
with support for:
- Direct relations with allowed subject types and subject sets
- Derived relations built from a closed rewrite algebra
- Hierarchical (follow) and group-based (subject set) inheritance
- Bounded-depth recursion and cycle-safe evaluation
- Pluggable tuple storage (memory, JSON file, SQLite)

Quick Start
-----------

    >>> from rebac import (
    ...     MemoryTupleStore,
    ...     RebacClient,
    ...     define_schema,
    ...     derived,
    ...     entity,
    ...     follow_relation,
    ...     relation,
    ...     same_object_relation,
    ...     union,
    ... )
    >>>
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
    >>>
    >>> client = RebacClient(schema, MemoryTupleStore())
    >>> client.write([
    ...     {"object": "folder:root", "relation": "owner", "subject": "user:alice"},
    ...     {"object": "folder:child", "relation": "parent", "subject": "folder:root"},
    ... ])
    >>> client.check("user:alice", "folder:child", "viewer")
    True

Architecture
------------

- core: Exceptions, tuples, queries, the TupleStore interface
- refs: Object and subject-set reference codec
- rewrite: Rewrite algebra for derived relations
- schema: Schema model and validator
- engine: Recursive check evaluator
- client: RebacClient facade with write validation
- storage: Tuple store backends (Memory, File, SQLite)
- loader: YAML/JSON schema files
- cli: ``rebac`` command-line interface
"""

from rebac.core import (
    # Exceptions
    DerivedRelationWriteError,
    DisallowedSubjectError,
    MalformedReferenceError,
    RebacError,
    SchemaValidationError,
    TupleStoreError,
    UnknownEntityTypeError,
    UnknownRelationError,
    # Core types
    CheckRequest,
    RelationTuple,
    TupleQuery,
    ValidationResult,
    # Interfaces
    TupleStore,
)

from rebac.refs import (
    ObjectRef,
    SubjectSetRef,
    is_subject_set,
    is_valid_name,
    object_ref,
    parse_object_ref,
    parse_subject_ref,
    parse_subject_set_ref,
    subject_set_ref,
)

from rebac.rewrite import (
    DifferenceRewrite,
    FollowRelation,
    IntersectionRewrite,
    Rewrite,
    SameObjectRelation,
    UnionRewrite,
    difference,
    follow_relation,
    intersection,
    rewrite_from_dict,
    rewrite_to_dict,
    same_object_relation,
    union,
)

from rebac.schema import (
    DerivedRelation,
    DirectRelation,
    EntityDef,
    RelationDef,
    RelationKind,
    Schema,
    define_schema,
    derived,
    entity,
    relation,
    validate_schema,
)

from rebac.engine import (
    DEFAULT_MAX_DEPTH,
    CheckEngine,
    EngineConfig,
    validate_check_request,
)

from rebac.client import (
    RebacClient,
    RebacClientConfig,
)

from rebac.storage import (
    FileStorageConfig,
    FileTupleStore,
    MemoryTupleStore,
    SQLiteTupleStore,
    create_tuple_store,
)

from rebac.loader import (
    dump_schema_file,
    load_schema_file,
)


__version__ = "0.1.0"

__all__ = [
    # ==========================================================================
    # Exceptions
    # ==========================================================================
    "DerivedRelationWriteError",
    "DisallowedSubjectError",
    "MalformedReferenceError",
    "RebacError",
    "SchemaValidationError",
    "TupleStoreError",
    "UnknownEntityTypeError",
    "UnknownRelationError",
    # ==========================================================================
    # Core Types
    # ==========================================================================
    "CheckRequest",
    "RelationTuple",
    "TupleQuery",
    "ValidationResult",
    "TupleStore",
    # ==========================================================================
    # References
    # ==========================================================================
    "ObjectRef",
    "SubjectSetRef",
    "is_subject_set",
    "is_valid_name",
    "object_ref",
    "parse_object_ref",
    "parse_subject_ref",
    "parse_subject_set_ref",
    "subject_set_ref",
    # ==========================================================================
    # Rewrite Algebra
    # ==========================================================================
    "DifferenceRewrite",
    "FollowRelation",
    "IntersectionRewrite",
    "Rewrite",
    "SameObjectRelation",
    "UnionRewrite",
    "difference",
    "follow_relation",
    "intersection",
    "rewrite_from_dict",
    "rewrite_to_dict",
    "same_object_relation",
    "union",
    # ==========================================================================
    # Schema
    # ==========================================================================
    "DerivedRelation",
    "DirectRelation",
    "EntityDef",
    "RelationDef",
    "RelationKind",
    "Schema",
    "define_schema",
    "derived",
    "entity",
    "relation",
    "validate_schema",
    # ==========================================================================
    # Engine & Client
    # ==========================================================================
    "DEFAULT_MAX_DEPTH",
    "CheckEngine",
    "EngineConfig",
    "validate_check_request",
    "RebacClient",
    "RebacClientConfig",
    # ==========================================================================
    # Storage Backends
    # ==========================================================================
    "FileStorageConfig",
    "FileTupleStore",
    "MemoryTupleStore",
    "SQLiteTupleStore",
    "create_tuple_store",
    # ==========================================================================
    # Schema Files
    # ==========================================================================
    "dump_schema_file",
    "load_schema_file",
]
