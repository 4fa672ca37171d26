"""Tests for tuple storage backends."""

from __future__ import annotations

import json

import pytest


def _tuples():
    from rebac import RelationTuple

    return [
        RelationTuple("doc:1", "viewer", "user:alice"),
        RelationTuple("doc:1", "viewer", "group:eng#member"),
        RelationTuple("doc:2", "owner", "user:alice"),
    ]


def _backends(tmp_path):
    from rebac import FileStorageConfig, FileTupleStore, MemoryTupleStore, SQLiteTupleStore

    return [
        MemoryTupleStore(),
        FileTupleStore(config=FileStorageConfig(base_path=tmp_path / "file")),
        SQLiteTupleStore(db_path=tmp_path / "sqlite" / "tuples.db"),
    ]


class TestStoreContract:
    """Tests that every backend honours the tuple store contract."""

    def test_write_and_query(self, tmp_path):
        """Test filtering on each field."""
        from rebac import TupleQuery

        for store in _backends(tmp_path):
            store.write(_tuples())

            assert len(store.query(TupleQuery())) == 3
            assert store.query(TupleQuery(object="doc:1", relation="viewer")) == _tuples()[:2]
            assert store.query(TupleQuery(subject="user:alice")) == [_tuples()[0], _tuples()[2]]
            assert store.query(TupleQuery(relation="owner")) == [_tuples()[2]]
            assert store.query(
                TupleQuery(object="doc:1", relation="viewer", subject="user:alice")
            ) == [_tuples()[0]]
            assert store.query(TupleQuery(object="doc:3")) == []
            store.close()

    def test_write_is_upsert(self, tmp_path):
        """Test that rewriting a tuple does not duplicate it."""
        from rebac import TupleQuery

        for store in _backends(tmp_path):
            store.write(_tuples())
            store.write(_tuples()[:1])

            assert len(store.query(TupleQuery())) == 3
            store.close()

    def test_delete(self, tmp_path):
        """Test delete removes only matching tuples and ignores missing ones."""
        from rebac import RelationTuple, TupleQuery

        for store in _backends(tmp_path):
            store.write(_tuples())
            store.delete([_tuples()[0], RelationTuple("doc:9", "viewer", "user:nobody")])

            assert store.query(TupleQuery()) == _tuples()[1:]
            store.close()

    def test_query_returns_independent_list(self, tmp_path):
        """Test that mutating a result does not affect the store."""
        from rebac import TupleQuery

        for store in _backends(tmp_path):
            store.write(_tuples())
            result = store.query(TupleQuery(object="doc:1", relation="viewer"))
            result.clear()

            assert len(store.query(TupleQuery(object="doc:1", relation="viewer"))) == 2
            store.close()


class TestMemoryTupleStore:
    """Tests for MemoryTupleStore."""

    def test_initial_tuples_and_len(self):
        """Test constructing with tuples."""
        from rebac import MemoryTupleStore

        store = MemoryTupleStore(_tuples())
        assert len(store) == 3

        store.clear()
        assert len(store) == 0


class TestFileTupleStore:
    """Tests for FileTupleStore."""

    def test_persists_across_instances(self, tmp_path):
        """Test tuples survive reopening the file."""
        from rebac import FileStorageConfig, FileTupleStore, TupleQuery

        config = FileStorageConfig(base_path=tmp_path)
        FileTupleStore(config=config).write(_tuples())

        reopened = FileTupleStore(config=config)
        assert reopened.query(TupleQuery()) == _tuples()

        data = json.loads(config.file_path.read_text())
        assert data[0] == {"object": "doc:1", "relation": "viewer", "subject": "user:alice"}

    def test_reload(self, tmp_path):
        """Test that reload picks up external changes."""
        from rebac import FileStorageConfig, FileTupleStore, TupleQuery

        config = FileStorageConfig(base_path=tmp_path)
        store = FileTupleStore(config=config)
        store.write(_tuples())

        FileTupleStore(config=config).delete(_tuples()[:2])
        assert len(store.query(TupleQuery())) == 3

        store.reload()
        assert store.query(TupleQuery()) == _tuples()[2:]

    def test_corrupt_file_raises(self, tmp_path):
        """Test that a corrupted file surfaces as a store error."""
        from rebac import FileStorageConfig, FileTupleStore, TupleQuery, TupleStoreError

        config = FileStorageConfig(base_path=tmp_path)
        config.file_path.write_text("{not json")

        store = FileTupleStore(config=config)
        with pytest.raises(TupleStoreError, match="Corrupted tuple file"):
            store.query(TupleQuery())

    def test_no_temp_files_left(self, tmp_path):
        """Test atomic replacement cleans up after itself."""
        from rebac import FileStorageConfig, FileTupleStore

        store = FileTupleStore(config=FileStorageConfig(base_path=tmp_path))
        store.write(_tuples())

        assert sorted(p.name for p in tmp_path.iterdir()) == ["tuples.json"]


class TestSQLiteTupleStore:
    """Tests for SQLiteTupleStore."""

    def test_persists_across_connections(self, tmp_path):
        """Test tuples survive reconnecting."""
        from rebac import SQLiteTupleStore, TupleQuery

        db_path = tmp_path / "tuples.db"
        store = SQLiteTupleStore(db_path=db_path)
        store.write(_tuples())
        store.close()

        reopened = SQLiteTupleStore(db_path=db_path)
        assert reopened.query(TupleQuery()) == _tuples()
        reopened.close()


class TestCreateTupleStore:
    """Tests for the store factory."""

    def test_backends(self, tmp_path):
        """Test each backend name."""
        from rebac import (
            FileTupleStore,
            MemoryTupleStore,
            SQLiteTupleStore,
            create_tuple_store,
        )

        assert isinstance(create_tuple_store("memory"), MemoryTupleStore)
        assert isinstance(create_tuple_store("file", base_path=tmp_path), FileTupleStore)

        store = create_tuple_store("sqlite", db_path=tmp_path / "t.db")
        assert isinstance(store, SQLiteTupleStore)
        store.close()

    def test_unknown_backend(self):
        """Test that unknown backends are rejected."""
        from rebac import create_tuple_store

        with pytest.raises(ValueError, match="Unknown backend"):
            create_tuple_store("redis")
