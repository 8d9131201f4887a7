from notes_website.backend.domain import UNCATEGORIZED, StoreError
from notes_website.backend.session import Screen
from notes_website.backend.workspace import RowMode

from conftest import PASSWORD


def contents(view):
    return [n.content for n in view.visible_notes]


def test_mount_without_session_goes_to_login(client_context, store):
    view = client_context.workspace

    assert view.mount() is False

    assert client_context.navigator.current == Screen.LOGIN
    assert not view.mounted
    assert store.listener_count() == 0


def test_mount_subscribes_and_unmount_releases(signed_in, store):
    view = signed_in.workspace

    assert view.mount()
    assert store.listener_count() == 2

    view.unmount()
    assert store.listener_count() == 0


def test_sign_out_unmounts(signed_in, store):
    signed_in.workspace.mount()

    signed_in.controller.sign_out()

    assert not signed_in.workspace.mounted
    assert store.listener_count() == 0
    assert signed_in.navigator.current == Screen.LOGIN


def test_login_as_another_user_replaces_subscriptions(signed_in, identity, store):
    view = signed_in.workspace
    view.mount()
    view.add_note("alice private")
    view.set_scratch("alice scratch")
    alice_token = signed_in.auth.current_session.token

    identity.sign_up("bob@notes.io", PASSWORD)
    assert signed_in.controller.login("bob@notes.io", PASSWORD)
    assert view.mount()

    assert contents(view) == []
    assert view.scratch == ""
    view.add_note("bob note")
    assert contents(view) == ["bob note"]
    assert store.listener_count() == 2
    assert alice_token not in identity.active


def test_add_note_uses_live_snapshot(signed_in):
    view = signed_in.workspace
    view.mount()

    view.new_note = "hello"
    note_id = view.add_note()

    assert note_id
    assert view.new_note == ""
    assert [(n.id, n.content, n.category) for n in view.notes] == [(note_id, "hello", UNCATEGORIZED)]


def test_blank_draft_is_ignored(signed_in):
    view = signed_in.workspace
    view.mount()

    assert view.add_note("   ") is None
    assert view.notes == []


def test_category_filter_scenario(signed_in):
    view = signed_in.workspace
    view.mount()
    work = view.add_category("Work")
    home = view.add_category("Home")

    view.select_filter(work)
    note_id = view.add_note("quarterly report")
    note = view.notes[0]
    assert note.id == note_id
    assert note.category == work
    assert contents(view) == ["quarterly report"]

    view.select_filter("all")
    assert contents(view) == ["quarterly report"]

    view.select_filter(home)
    assert contents(view) == []


def test_edit_save_and_cancel(signed_in):
    view = signed_in.workspace
    view.mount()
    note_id = view.add_note("first")

    assert view.begin_edit(note_id)
    assert view.mode(note_id) == RowMode.EDITING
    assert view.edit_buffers[note_id] == "first"

    view.set_edit_buffer(note_id, "changed")
    view.cancel_edit(note_id)
    assert view.mode(note_id) == RowMode.VIEWING
    assert contents(view) == ["first"]

    view.begin_edit(note_id)
    assert view.save_edit(note_id, "second")
    assert view.mode(note_id) == RowMode.VIEWING
    assert contents(view) == ["second"]


def test_saving_blank_edit_discards_silently(signed_in):
    view = signed_in.workspace
    view.mount()
    note_id = view.add_note("keep me")

    view.begin_edit(note_id)
    assert view.save_edit(note_id, "  ") is False

    assert view.mode(note_id) == RowMode.VIEWING
    assert contents(view) == ["keep me"]


def test_edit_unknown_note_is_noop(signed_in):
    view = signed_in.workspace
    view.mount()
    assert view.begin_edit("nope") is False
    assert view.save_edit("nope") is False


def test_delete_needs_request_and_confirm(signed_in):
    view = signed_in.workspace
    view.mount()
    note_id = view.add_note("doomed")

    assert view.request_delete(note_id)
    assert view.pending_delete == note_id
    assert contents(view) == ["doomed"]

    view.cancel_delete()
    assert view.pending_delete is None
    assert contents(view) == ["doomed"]

    view.request_delete(note_id)
    assert view.confirm_delete()
    assert view.pending_delete is None
    assert view.notes == []


def test_confirm_without_target_is_noop(signed_in):
    view = signed_in.workspace
    view.mount()
    view.add_note("safe")

    assert view.confirm_delete() is False
    assert contents(view) == ["safe"]


def test_copy_note_and_scratch(signed_in):
    view = signed_in.workspace
    view.mount()
    note_id = view.add_note("a\nb")

    assert view.copy_note(note_id)
    assert signed_in.clipboard.take() == "a\nb"
    assert view.notice == "Copied to clipboard."

    assert view.create_from_note(note_id)
    view.set_scratch(view.scratch + "\nc")
    assert view.copy_scratch()
    assert signed_in.clipboard.take() == "a\nb\nc"
    assert contents(view) == ["a\nb"]


def test_clipboard_failure_is_reported(signed_in):
    class BrokenClipboard:
        def write(self, text):
            raise OSError("no clipboard")

    view = signed_in.workspace
    view.mount()
    note_id = view.add_note("text")
    view.clipboard = BrokenClipboard()

    assert view.copy_note(note_id) is False
    assert view.notice == "Copy failed."


def test_store_failure_keeps_input(signed_in, monkeypatch):
    view = signed_in.workspace
    view.mount()
    note_id = view.add_note("original")

    def fail(*args, **kwargs):
        raise StoreError("disk full")

    monkeypatch.setattr(view.repository, "add_note", fail)
    monkeypatch.setattr(view.repository, "update_note", fail)
    monkeypatch.setattr(view.repository, "delete_note", fail)

    assert view.add_note("unsaved") is None
    assert view.new_note == "unsaved"
    assert view.notice

    view.begin_edit(note_id)
    assert view.save_edit(note_id, "edited") is False
    assert view.edit_buffers[note_id] == "edited"

    view.request_delete(note_id)
    assert view.confirm_delete() is False
    assert view.pending_delete is None
    assert contents(view) == ["original"]


def test_state_is_serializable(signed_in):
    view = signed_in.workspace
    view.mount()
    work = view.add_category("Work")
    view.select_filter(work)
    view.add_note("x")

    state = view.state()

    assert state["screen"] == "workspace"
    assert state["notes"][0]["category_name"] == "Work"
    assert state["notes"][0]["mode"] == "viewing"
    assert state["categories"] == [{"id": work, "name": "Work"}]
