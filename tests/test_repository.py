
import pytest

from notes_website.backend.domain import UNCATEGORIZED, Note, SessionRequiredError
from notes_website.backend.repository import NoteRepository, filter_notes, resolve_category


class SpyStore:
    """Records every call; stands in for TreeStore where no write should happen."""

    def __init__(self):
        self.calls = []

    def push(self, *args):
        self.calls.append(("push", args))
        return "id1"

    def update(self, *args):
        self.calls.append(("update", args))

    def remove(self, *args):
        self.calls.append(("remove", args))


@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
def test_blank_content_never_reaches_store(content):
    store = SpyStore()
    repo = NoteRepository(store)

    assert repo.add_note("u1", content) is None
    assert repo.update_note("u1", "n1", content) is False
    assert repo.add_category("u1", content) is None
    assert store.calls == []


def test_delete_without_id_is_noop():
    store = SpyStore()
    assert NoteRepository(store).delete_note("u1", None) is False
    assert store.calls == []


def test_operations_require_uid():
    repo = NoteRepository(SpyStore())
    with pytest.raises(SessionRequiredError):
        repo.add_note("", "text")
    with pytest.raises(SessionRequiredError):
        repo.subscribe_notes("")


def test_resolve_category():
    assert resolve_category("all") == UNCATEGORIZED
    assert resolve_category(None) == UNCATEGORIZED
    assert resolve_category("cat1") == "cat1"


def test_filter_notes():
    notes = [Note("1", "a", "c1"), Note("2", "b", UNCATEGORIZED), Note("3", "c", "c1")]

    assert filter_notes(notes, "all") == notes
    assert [n.id for n in filter_notes(notes, "c1")] == ["1", "3"]
    assert [n.id for n in filter_notes(notes, UNCATEGORIZED)] == ["2"]
    assert filter_notes(notes, "missing") == []
    assert [n.id for n in notes] == ["1", "2", "3"]


def test_missing_category_projects_uncategorized(store):
    store.push("notes/u1", {"content": "legacy note"})
    query = NoteRepository(store).subscribe_notes("u1")

    assert [n.category for n in query.latest] == [UNCATEGORIZED]
    query.cancel()


def test_add_note_round_trip(store):
    repo = NoteRepository(store)
    query = repo.subscribe_notes("u1")
    snapshots = []
    query.on_snapshot(snapshots.append)

    note_id = repo.add_note("u1", "line one\nline two", "cat1")

    assert len(snapshots) == 1
    new = [n for n in snapshots[-1] if n.id == note_id]
    assert new == [Note(note_id, "line one\nline two", "cat1")]
    query.cancel()


def test_update_and_delete(store):
    repo = NoteRepository(store)
    note_id = repo.add_note("u1", "draft")

    assert repo.update_note("u1", note_id, "final", "cat2")
    query = repo.subscribe_notes("u1")
    assert query.latest == [Note(note_id, "final", "cat2")]

    repo.delete_note("u1", note_id)
    assert query.latest == []
    query.cancel()


def test_categories_snapshot(store):
    repo = NoteRepository(store)
    work = repo.add_category("u1", " Work ")
    query = repo.subscribe_categories("u1")

    assert [(c.id, c.name) for c in query.latest] == [(work, "Work")]
    query.cancel()


def test_cancel_releases_listener_and_stops_emissions(store):
    repo = NoteRepository(store)
    query = repo.subscribe_notes("u1")
    snapshots = []
    query.on_snapshot(snapshots.append)

    query.cancel()
    repo.add_note("u1", "after cancel")

    assert snapshots == []
    assert store.listener_count("notes/u1") == 0

