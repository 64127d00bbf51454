"""Unit tests for store/kv.py and store/connections.py.

Covers:
- quick_insert() assigns an id only when the record has none
- quick_select()/quick_select_all() equality semantics and insertion order
- quick_select_in() membership lookup
- quick_update()/quick_delete() affect only matching records in one collection
- collections are isolated from each other
- get_store() named connection registry
"""

from __future__ import annotations

import pytest

from core.config import get_settings
from store import connections
from store.kv import KVStore


class TestInsertSelect:
    def test_insert_assigns_id(self, store: KVStore) -> None:
        record = store.quick_insert("users", {"username": "alice"})
        assert isinstance(record["id"], int)
        assert store.quick_select("users", {"id": record["id"]}) == record

    def test_insert_uses_custom_id_key(self, store: KVStore) -> None:
        record = store.quick_insert("users", {"username": "alice"}, id_key="uid")
        assert "uid" in record and "id" not in record

    def test_insert_keeps_existing_id(self, store: KVStore) -> None:
        record = store.quick_insert("roles", {"id": "admin-role", "role": "admin"})
        assert record["id"] == "admin-role"

    def test_insert_does_not_mutate_argument(self, store: KVStore) -> None:
        data = {"username": "alice"}
        store.quick_insert("users", data)
        assert data == {"username": "alice"}

    def test_select_missing_returns_none(self, store: KVStore) -> None:
        assert store.quick_select("users", {"username": "nobody"}) is None

    def test_equality_is_type_strict(self, store: KVStore) -> None:
        store.quick_insert("user_roles", {"user_id": 7, "role_id": 1})
        assert store.quick_select("user_roles", {"user_id": "7"}) is None
        assert store.quick_select("user_roles", {"user_id": 7}) is not None

    def test_bool_and_float_do_not_match_int(self, store: KVStore) -> None:
        store.quick_insert("flags", {"id": "a", "value": 1})
        store.quick_insert("flags", {"id": "b", "value": True})
        store.quick_insert("flags", {"id": "c", "value": 1.0})
        assert [r["id"] for r in store.quick_select_all("flags", {"value": 1})] == ["a"]
        assert [r["id"] for r in store.quick_select_all("flags", {"value": True})] == ["b"]
        assert [r["id"] for r in store.quick_select_in("flags", "value", [1.0])] == ["c"]

    def test_missing_key_never_matches(self, store: KVStore) -> None:
        store.quick_insert("users", {"username": "alice"})
        assert store.quick_select("users", {"email": None}) is None

    def test_select_all_in_insertion_order(self, store: KVStore) -> None:
        for name in ("c", "a", "b"):
            store.quick_insert("users", {"username": name, "team": "x"})
        names = [r["username"] for r in store.quick_select_all("users", {"team": "x"})]
        assert names == ["c", "a", "b"]

    def test_collections_are_isolated(self, store: KVStore) -> None:
        store.quick_insert("users", {"name": "alice"})
        store.quick_insert("roles", {"name": "alice"})
        assert len(store.quick_select_all("users")) == 1
        assert store.quick_select_all("user_roles") == []

    def test_select_in(self, store: KVStore) -> None:
        for i, role in enumerate(("admin", "editor", "viewer"), start=1):
            store.quick_insert("roles", {"id": i, "role": role})
        found = store.quick_select_in("roles", "id", [3, 1, 42])
        assert [r["role"] for r in found] == ["admin", "viewer"]
        assert store.quick_select_in("roles", "id", []) == []


class TestUpdateDelete:
    def test_update_merges_fields(self, store: KVStore) -> None:
        store.quick_insert("users", {"username": "alice", "email": "a@x", "team": "red"})
        changed = store.quick_update("users", {"username": "alice"}, {"email": "b@x"})
        assert changed == 1
        assert store.quick_select("users", {"username": "alice"}) == {
            "id": 1,
            "username": "alice",
            "email": "b@x",
            "team": "red",
        }

    def test_update_no_match(self, store: KVStore) -> None:
        assert store.quick_update("users", {"username": "ghost"}, {"email": "x"}) == 0

    def test_delete_only_matching(self, store: KVStore) -> None:
        store.quick_insert("user_roles", {"user_id": 1, "role_id": 1})
        store.quick_insert("user_roles", {"user_id": 1, "role_id": 2})
        store.quick_insert("user_roles", {"user_id": 2, "role_id": 1})
        assert store.quick_delete("user_roles", {"user_id": 1, "role_id": 2}) == 1
        remaining = store.quick_select_all("user_roles")
        assert {(r["user_id"], r["role_id"]) for r in remaining} == {(1, 1), (2, 1)}

    def test_ping(self, store: KVStore) -> None:
        assert store.ping() is True


class TestConnections:
    @pytest.fixture(autouse=True)
    def _settings(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_URL", f"sqlite:///{tmp_path / 'default.db'}")
        monkeypatch.setenv("STORE_CONNECTIONS", f'{{"replica": "sqlite:///{tmp_path / "replica.db"}"}}')
        get_settings.cache_clear()
        yield
        connections.close_all()
        get_settings.cache_clear()

    def test_default_connection(self, tmp_path) -> None:
        store = connections.get_store()
        assert store.db_url.endswith("default.db")

    def test_named_connection_is_cached(self) -> None:
        first = connections.get_store("replica")
        assert first.db_url.endswith("replica.db")
        assert connections.get_store("replica") is first
        assert connections.get_store() is not first

    def test_unknown_connection(self) -> None:
        with pytest.raises(ValueError, match="Unknown store connection"):
            connections.get_store("nope")

    def test_close_all_forgets_stores(self) -> None:
        first = connections.get_store()
        connections.close_all()
        assert connections.get_store() is not first
