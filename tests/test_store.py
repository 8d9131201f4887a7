import pytest

from notes_website.backend.services import TreeStore, split_path


def test_push_and_get_in_insertion_order(store):
    first = store.push("notes/u1", {"content": "a"})
    second = store.push("notes/u1", {"content": "b"})

    snapshot = store.get("notes/u1")

    assert list(snapshot) == [first, second]
    assert snapshot[first] == {"content": "a"}


def test_collections_are_scoped_by_path(store):
    store.push("notes/u1", {"content": "mine"})
    store.push("notes/u2", {"content": "theirs"})

    assert [r["content"] for r in store.get("notes/u1").values()] == ["mine"]
    assert store.get("notes/u3") == {}


def test_update_merges_fields(store):
    key = store.push("notes/u1", {"content": "a", "category": "c1"})

    store.update(f"notes/u1/{key}", {"content": "b"})

    assert store.get("notes/u1")[key] == {"content": "b", "category": "c1"}


def test_remove_deletes_record(store):
    keep = store.push("notes/u1", {"content": "keep"})
    drop = store.push("notes/u1", {"content": "drop"})

    store.remove(f"notes/u1/{drop}")

    assert list(store.get("notes/u1")) == [keep]


def test_remove_collection_deletes_everything_below(store):
    store.push("notes/u1", {"content": "a"})
    store.push("notes/u1", {"content": "b"})

    store.remove("notes/u1")

    assert store.get("notes/u1") == {}


def test_subscribe_gets_initial_and_full_snapshots(store):
    store.push("notes/u1", {"content": "a"})
    seen = []

    unsubscribe = store.subscribe("notes/u1", seen.append)
    store.push("notes/u1", {"content": "b"})
    store.push("notes/u2", {"content": "elsewhere"})

    assert len(seen) == 2
    assert [r["content"] for r in seen[0].values()] == ["a"]
    assert [r["content"] for r in seen[1].values()] == ["a", "b"]

    unsubscribe()
    unsubscribe()
    store.push("notes/u1", {"content": "c"})
    assert len(seen) == 2
    assert store.listener_count() == 0


def test_failing_listener_does_not_break_writes(store):
    def boom(snapshot):
        if snapshot:
            raise RuntimeError("listener bug")

    store.subscribe("notes/u1", boom)
    key = store.push("notes/u1", {"content": "a"})

    assert key in store.get("notes/u1")


def test_data_survives_reopen(tmp_path):
    path = tmp_path / "tree.db"
    key = TreeStore(path).push("categories/u1", {"name": "Work"})

    assert TreeStore(path).get("categories/u1") == {key: {"name": "Work"}}


@pytest.mark.parametrize("bad", ["", "/", "notes//x", "notes/a.b", "notes/$id"])
def test_invalid_paths_rejected(bad):
    with pytest.raises(ValueError):
        split_path(bad)
