"""Tests for the collection / item model."""

from __future__ import annotations

import pytest

from conftest import LOG_PATH
from kindred.collection import Collection, Item, matches_filter
from kindred.errors import ItemNotFoundError, RecordEncodeError, VectorDimensionError
from kindred.store import AppendOnlyStore, encode_record


def _reload(memory_fs, timers) -> Collection:
    store = AppendOnlyStore(memory_fs, LOG_PATH, timer_factory=timers)
    c = Collection(store, name="reloaded")
    c.load()
    return c


class TestItem:
    def test_vector_property(self):
        assert Item("a", {"vec": [1.0, 2.0]}).vector == [1.0, 2.0]
        assert Item("a", {"vec": [1.0]}).has_vector

    def test_missing_or_empty_vector(self):
        assert Item("a").vector is None
        assert Item("a", {"vec": []}).vector is None
        assert not Item("a", {"vec": None}).has_vector


class TestMatchesFilter:
    def test_no_options_matches(self):
        assert matches_filter("anything")
        assert matches_filter("anything", {})

    def test_exclude_exact_keys(self):
        assert not matches_filter("a", {"exclude_key": "a"})
        assert not matches_filter("b", {"exclude_keys": ["a", "b"]})
        assert matches_filter("c", {"exclude_keys": ["a", "b"]})

    def test_exclude_prefixes(self):
        assert not matches_filter("notes/a", {"exclude_key_starts_with": "notes/"})
        assert not matches_filter("x/a", {"exclude_key_starts_with_any": ["notes/", "x/"]})
        assert matches_filter("y/a", {"exclude_key_starts_with_any": ["notes/", "x/"]})

    def test_exclude_includes_and_suffixes(self):
        assert not matches_filter("a#block", {"exclude_key_includes": "#"})
        assert not matches_filter("a.tmp", {"exclude_key_ends_with": ".tmp"})
        assert not matches_filter("a.bak", {"exclude_key_ends_with_any": [".tmp", ".bak"]})
        assert not matches_filter("a/draft/b", {"exclude_key_includes_any": ["draft"]})

    def test_inclusions(self):
        assert matches_filter("notes/a.md", {"key_starts_with": "notes/", "key_ends_with": ".md"})
        assert not matches_filter("docs/a.md", {"key_starts_with": "notes/"})
        assert not matches_filter("notes/a.txt", {"key_ends_with": ".md"})
        assert matches_filter("b/x", {"key_starts_with_any": ["a/", "b/"]})
        assert not matches_filter("c/x", {"key_starts_with_any": ["a/", "b/"]})

    def test_unknown_options_ignored(self):
        assert matches_filter("a", {"colour": "blue"})


class TestLifecycle:
    def test_get_unknown(self, collection):
        assert collection.get("nope") is None
        assert "nope" not in collection

    def test_set_marks_dirty_without_writing(self, collection, store):
        collection.set(Item("a", {"x": 1}))
        assert collection.get("a").data == {"x": 1}
        assert not store.dirty
        assert "a" not in store

    def test_queue_save_writes_record(self, collection, store):
        item = collection.set(Item("a", {"x": 1}))
        collection.queue_save(item)
        assert store.get("a") == {"x": 1}
        assert store.pending_count == 1

    def test_process_save_queue(self, collection, store):
        collection.set(Item("a", {"x": 1}))
        collection.set(Item("b", {"y": 2}))
        assert collection.process_save_queue() == 2
        assert collection.process_save_queue() == 0
        assert store.snapshot() == {"a": {"x": 1}, "b": {"y": 2}}

    def test_replacing_drops_old_fields(self, collection, memory_fs, timers):
        collection.update("a", {"old": 1, "keep": {"x": 1}})
        collection.flush()
        collection.queue_save(collection.set(Item("a", {"new": 2})))
        assert collection.store.get("a") == {"new": 2}

        collection.store.append_pending()
        assert _reload(memory_fs, timers).get("a").data == {"new": 2}

    def test_update_creates_item(self, collection, store):
        item = collection.update("a", {"x": {"y": 1}})
        assert item.data == {"x": {"y": 1}}
        assert store.get("a") == {"x": {"y": 1}}

    def test_update_deep_merges(self, collection, store):
        collection.update("a", {"x": {"y": 1}, "tags": ["p", "q"]})
        item = collection.update("a", {"x": {"z": 2}, "tags": []})
        assert item.data == {"x": {"y": 1, "z": 2}, "tags": []}
        assert store.get("a") == item.data

    def test_update_writes_only_the_patch(self, collection, memory_fs):
        collection.update("a", {"x": 1})
        collection.flush()
        collection.update("a", {"y": 2})
        collection.store.append_pending()
        assert memory_fs.read(LOG_PATH).endswith(encode_record("a", {"y": 2}))

    def test_update_does_not_alias_patch(self, collection):
        patch = {"list": [1]}
        item = collection.update("a", patch)
        patch["list"].append(2)
        assert item.data == {"list": [1]}

    def test_update_with_non_json_data_leaves_item_unchanged(self, collection, store):
        collection.update("a", {"x": 1})
        with pytest.raises(RecordEncodeError):
            collection.update("a", {"tags": {"p", "q"}})
        with pytest.raises(RecordEncodeError):
            collection.update("b", {"when": object()})
        assert collection.get("a").data == {"x": 1}
        assert "b" not in collection
        assert store.snapshot() == {"a": {"x": 1}}

    def test_update_of_dirty_item_saves_whole_item(self, collection, store):
        collection.set(Item("a", {"x": 1}))
        collection.update("a", {"y": 2})
        assert store.get("a") == {"x": 1, "y": 2}
        assert collection.process_save_queue() == 0

    def test_delete_removes_and_tombstones(self, collection, store, memory_fs, timers):
        collection.update("a", {"x": 1})
        collection.flush()
        assert collection.delete("a") is True
        assert collection.get("a") is None
        assert "a" not in store

        collection.store.append_pending()
        assert memory_fs.read(LOG_PATH).endswith(encode_record("a", None))
        assert "a" not in _reload(memory_fs, timers)

    def test_delete_unknown_still_tombstones(self, collection, store):
        assert collection.delete("ghost") is False
        assert store.pending_count == 1

    def test_delete_discards_unsaved_changes(self, collection):
        collection.set(Item("a", {"x": 1}))
        collection.delete("a")
        assert collection.process_save_queue() == 0

    def test_load_rebuilds_items(self, memory_fs, timers):
        memory_fs.write(
            LOG_PATH,
            encode_record("a", {"x": 1}) + encode_record("b", {"vec": [1.0, 0.0]}) + encode_record("a", {"y": 2}),
        )
        c = _reload(memory_fs, timers)
        assert c.keys() == ["a", "b"]
        assert c.get("a").data == {"x": 1, "y": 2}
        assert c.dimension == 2

    def test_close_persists_dirty_items(self, collection, memory_fs, timers):
        collection.set(Item("a", {"x": 1}))
        collection.close()
        assert _reload(memory_fs, timers).get("a").data == {"x": 1}

    def test_repr(self, collection):
        collection.update("a", {})
        assert repr(collection) == "Collection(name='test', items=1)"


class TestEnumeration:
    @pytest.fixture()
    def populated(self, collection):
        for key in ["notes/a.md", "notes/b.md", "docs/c.md", "notes/d.txt"]:
            collection.update(key, {"k": key})
        return collection

    def test_iteration_is_insertion_order(self, populated):
        assert [i.key for i in populated] == ["notes/a.md", "notes/b.md", "docs/c.md", "notes/d.txt"]

    def test_iteration_is_restartable(self, populated):
        first = [i.key for i in populated.items()]
        second = [i.key for i in populated.items()]
        assert first == second

    def test_iteration_is_lazy(self, populated):
        it = populated.items()
        assert next(it).key == "notes/a.md"

    def test_delete_during_iteration(self, populated):
        seen = []
        for item in populated:
            seen.append(item.key)
            if item.key == "notes/a.md":
                populated.delete("notes/b.md")
        assert seen == ["notes/a.md", "docs/c.md", "notes/d.txt"]

    def test_filter(self, populated):
        keys = [i.key for i in populated.filter(key_starts_with="notes/", key_ends_with=".md")]
        assert keys == ["notes/a.md", "notes/b.md"]

    def test_filter_limit(self, populated):
        assert [i.key for i in populated.filter(limit=2)] == ["notes/a.md", "notes/b.md"]

    def test_get_many_keeps_order_and_skips_unknown(self, populated):
        items = populated.get_many(["docs/c.md", "ghost", "notes/a.md"])
        assert [i.key for i in items] == ["docs/c.md", "notes/a.md"]

    def test_len_and_contains(self, populated):
        assert len(populated) == 4
        assert "docs/c.md" in populated


class TestVectors:
    def test_first_vector_fixes_dimension(self, collection):
        assert collection.dimension is None
        collection.update("a", {"vec": [1.0, 2.0, 3.0]})
        assert collection.dimension == 3

    def test_mismatched_vector_rejected(self, collection):
        collection.update("a", {"vec": [1.0, 2.0, 3.0]})
        with pytest.raises(VectorDimensionError) as exc_info:
            collection.update("b", {"vec": [1.0, 2.0]})
        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 2
        assert "b" not in collection

    def test_set_checks_dimension(self, collection):
        collection.set(Item("a", {"vec": [1.0, 0.0]}))
        with pytest.raises(VectorDimensionError):
            collection.set(Item("b", {"vec": [1.0]}))

    def test_set_vector(self, collection, store):
        collection.update("a", {"content": "hello"})
        item = collection.set_vector("a", [1, 2])
        assert item.vector == [1.0, 2.0]
        assert store.get("a") == {"content": "hello", "vec": [1.0, 2.0]}

    def test_set_vector_unknown_key(self, collection):
        with pytest.raises(ItemNotFoundError):
            collection.set_vector("ghost", [1.0])

    def test_deleting_last_vector_resets_dimension(self, collection):
        collection.update("a", {"vec": [1.0, 2.0]})
        collection.delete("a")
        assert collection.dimension is None
        collection.update("b", {"vec": [1.0, 2.0, 3.0]})
        assert collection.dimension == 3

    def test_only_vectored_item_may_change_dimension(self, collection):
        collection.update("a", {"vec": [1.0, 2.0]})
        collection.update("b", {"content": "no vector"})
        collection.set(Item("a", {"vec": [1.0, 2.0, 3.0]}))
        assert collection.dimension == 3

        collection.set_vector("a", [1.0])
        assert collection.dimension == 1
        with pytest.raises(VectorDimensionError):
            collection.set_vector("b", [1.0, 2.0])

    def test_clearing_only_vector_resets_dimension(self, collection, store):
        collection.update("a", {"vec": [1.0, 2.0]})
        collection.update("a", {"vec": None})
        assert collection.get("a").vector is None
        assert collection.dimension is None
        collection.update("b", {"vec": [1.0, 2.0, 3.0]})
        assert collection.dimension == 3

    def test_replacing_vector_checked_against_other_items(self, collection):
        collection.update("a", {"vec": [1.0, 2.0]})
        collection.update("b", {"vec": [0.0, 1.0]})
        with pytest.raises(VectorDimensionError):
            collection.set(Item("a", {"vec": [1.0, 2.0, 3.0]}))
        assert collection.get("a").vector == [1.0, 2.0]
        assert collection.dimension == 2

    def test_load_warns_on_mixed_dimensions(self, memory_fs, timers, caplog):
        memory_fs.write(
            LOG_PATH,
            encode_record("a", {"vec": [1.0, 0.0]}) + encode_record("b", {"vec": [1.0, 0.0, 0.0]}),
        )
        with caplog.at_level("WARNING", logger="kindred.collection"):
            c = _reload(memory_fs, timers)
        assert c.dimension == 2
        assert "expected 2" in caplog.text


class TestNearest:
    def test_ranks_by_similarity(self, collection):
        collection.update("same", {"vec": [1.0, 0.0]})
        collection.update("close", {"vec": [0.9, 0.1]})
        collection.update("far", {"vec": [0.0, 1.0]})
        collection.update("novec", {"content": "x"})
        results = collection.nearest([1.0, 0.0], limit=10)
        assert [c.key for c in results] == ["same", "close", "far"]
        assert results[0].score == pytest.approx(1.0)

    def test_limit_and_filter(self, collection):
        collection.update("a/1", {"vec": [1.0, 0.0]})
        collection.update("a/2", {"vec": [0.8, 0.2]})
        collection.update("b/1", {"vec": [1.0, 0.0]})
        results = collection.nearest([1.0, 0.0], filter={"key_starts_with": "a/", "limit": 1})
        assert [c.key for c in results] == ["a/1"]
