import enum
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .domain import ALL_CATEGORIES, Category, Note, Session, StoreError
from .repository import LiveQuery, NoteRepository, filter_notes
from .session import Navigator, Screen, SessionController

logger = logging.getLogger(__name__)


class Clipboard(Protocol):
    def write(self, text: str) -> bool:
        ...


class MemoryClipboard:
    """Holds the last copied text until the browser collects it."""

    def __init__(self):
        self.text: Optional[str] = None

    def write(self, text: str) -> bool:
        self.text = text
        return True

    def take(self) -> Optional[str]:
        text, self.text = self.text, None
        return text


class RowMode(str, enum.Enum):
    VIEWING = "viewing"
    EDITING = "editing"


class WorkspaceView:
    """
    State of the authenticated workspace screen for one client.

    Keeps the latest notes/categories snapshots, the selected filter, the
    draft buffers, per-row edit buffers, the pending delete target and the
    scratch buffer. User intents go through the repository; failed writes
    leave the user's input in place and set ``notice``.
    """

    def __init__(self, controller: SessionController, repository: NoteRepository,
                 clipboard: Clipboard, navigator: Navigator):
        self.controller = controller
        self.repository = repository
        self.clipboard = clipboard
        self.navigator = navigator

        self.notes: List[Note] = []
        self.categories: List[Category] = []
        self.selected_filter = ALL_CATEGORIES
        self.new_note = ""
        self.new_category = ""
        self.edit_buffers: Dict[str, str] = {}
        self.pending_delete: Optional[str] = None
        self.scratch = ""
        self.notice = ""

        self._notes_query: Optional[LiveQuery] = None
        self._categories_query: Optional[LiveQuery] = None
        self._mounted_uid: Optional[str] = None
        self._listeners: List[Callable[["WorkspaceView"], None]] = []
        controller.add_listener(self._on_session_change)

    # -- lifecycle --

    @property
    def mounted(self) -> bool:
        return self._notes_query is not None

    @property
    def uid(self) -> Optional[str]:
        session = self.controller.session
        return session.uid if session else None

    def mount(self) -> bool:
        """Subscribe to the session's data, or send the client back to login."""
        if self.uid is None:
            self.navigator.go(Screen.LOGIN)
            return False
        if self.mounted:
            if self._mounted_uid == self.uid:
                return True
            self.unmount()
        self.navigator.go(Screen.WORKSPACE)
        self._mounted_uid = self.uid
        self._notes_query = self.repository.subscribe_notes(self.uid)
        self._notes_query.on_snapshot(self._on_notes)
        self._categories_query = self.repository.subscribe_categories(self.uid)
        self._categories_query.on_snapshot(self._on_categories)
        self.notes = list(self._notes_query.latest or [])
        self.categories = list(self._categories_query.latest or [])
        return True

    def unmount(self):
        for query in (self._notes_query, self._categories_query):
            if query is not None:
                query.cancel()
        self._notes_query = None
        self._categories_query = None
        self._mounted_uid = None
        self.notes = []
        self.categories = []
        self.selected_filter = ALL_CATEGORIES
        self.edit_buffers.clear()
        self.pending_delete = None

    def _on_session_change(self, session: Optional[Session]):
        # Subscriptions belong to one uid; any other identity starts from scratch.
        if self.mounted and (session is None or session.uid != self._mounted_uid):
            self.unmount()
            self.scratch = ""
            self.new_note = ""
            self.new_category = ""
            self.notice = ""

    def on_change(self, callback: Callable[["WorkspaceView"], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _changed(self):
        for callback in list(self._listeners):
            callback(self)

    def _on_notes(self, notes: List[Note]):
        self.notes = list(notes)
        ids = {n.id for n in self.notes}
        for note_id in [i for i in self.edit_buffers if i not in ids]:
            del self.edit_buffers[note_id]
        self._changed()

    def _on_categories(self, categories: List[Category]):
        self.categories = list(categories)
        self._changed()

    def _find(self, note_id: str) -> Optional[Note]:
        for note in self.notes:
            if note.id == note_id:
                return note
        return None

    def _store_failed(self, action: str, error: StoreError):
        logger.error("%s failed: %s", action, error)
        self.notice = f"Could not {action.lower()}. Your input was kept, please try again."

    # -- filtering --

    @property
    def visible_notes(self) -> List[Note]:
        return filter_notes(self.notes, self.selected_filter)

    def select_filter(self, value: str):
        self.selected_filter = value or ALL_CATEGORIES

    # -- notes --

    def add_note(self, content: Optional[str] = None) -> Optional[str]:
        if content is not None:
            self.new_note = content
        if not self.mounted or not self.new_note.strip():
            return None
        try:
            note_id = self.repository.add_note(self.uid, self.new_note, self.selected_filter)
        except StoreError as e:
            self._store_failed("Save note", e)
            return None
        self.new_note = ""
        self.notice = ""
        return note_id

    def mode(self, note_id: str) -> RowMode:
        return RowMode.EDITING if note_id in self.edit_buffers else RowMode.VIEWING

    def begin_edit(self, note_id: str) -> bool:
        note = self._find(note_id)
        if note is None:
            return False
        self.edit_buffers[note_id] = note.content
        return True

    def set_edit_buffer(self, note_id: str, text: str) -> bool:
        if note_id not in self.edit_buffers:
            return False
        self.edit_buffers[note_id] = text
        return True

    def save_edit(self, note_id: str, text: Optional[str] = None) -> bool:
        if note_id not in self.edit_buffers:
            return False
        if text is not None:
            self.edit_buffers[note_id] = text
        buffer = self.edit_buffers[note_id]
        if not buffer.strip():
            del self.edit_buffers[note_id]
            return False
        try:
            self.repository.update_note(self.uid, note_id, buffer, self.selected_filter)
        except StoreError as e:
            self._store_failed("Update note", e)
            return False
        self.edit_buffers.pop(note_id, None)
        self.notice = ""
        return True

    def cancel_edit(self, note_id: str):
        self.edit_buffers.pop(note_id, None)

    # -- delete confirmation --

    def request_delete(self, note_id: str) -> bool:
        if self._find(note_id) is None:
            return False
        self.pending_delete = note_id
        return True

    def cancel_delete(self):
        self.pending_delete = None

    def confirm_delete(self) -> bool:
        note_id, self.pending_delete = self.pending_delete, None
        if not note_id or not self.mounted:
            return False
        try:
            return self.repository.delete_note(self.uid, note_id)
        except StoreError as e:
            self._store_failed("Delete note", e)
            return False

    # -- categories --

    def add_category(self, name: Optional[str] = None) -> Optional[str]:
        if name is not None:
            self.new_category = name
        if not self.mounted or not self.new_category.strip():
            return None
        try:
            category_id = self.repository.add_category(self.uid, self.new_category)
        except StoreError as e:
            self._store_failed("Save category", e)
            return None
        self.new_category = ""
        return category_id

    def category_name(self, category_id: str) -> str:
        for category in self.categories:
            if category.id == category_id:
                return category.name
        return category_id

    # -- clipboard and scratch buffer --

    def _copy(self, text: str) -> bool:
        try:
            ok = self.clipboard.write(text)
        except Exception as e:
            logger.warning("Clipboard write failed: %s", e)
            ok = False
        self.notice = "Copied to clipboard." if ok else "Copy failed."
        return ok

    def copy_note(self, note_id: str) -> bool:
        note = self._find(note_id)
        if note is None:
            return False
        return self._copy(note.content)

    def create_from_note(self, note_id: str) -> bool:
        note = self._find(note_id)
        if note is None:
            return False
        self.scratch = note.content
        return True

    def set_scratch(self, text: str):
        self.scratch = text

    def copy_scratch(self) -> bool:
        if not self.scratch:
            return False
        return self._copy(self.scratch)

    # -- rendering --

    def state(self) -> Dict[str, Any]:
        return {
            "screen": self.navigator.current.value,
            "user": self.controller.session.to_dict() if self.controller.session else None,
            "filter": self.selected_filter,
            "categories": [c.to_dict() for c in self.categories],
            "notes": [
                dict(n.to_dict(),
                     category_name=self.category_name(n.category),
                     mode=self.mode(n.id).value,
                     edit_buffer=self.edit_buffers.get(n.id))
                for n in self.visible_notes
            ],
            "new_note": self.new_note,
            "new_category": self.new_category,
            "pending_delete": self.pending_delete,
            "scratch": self.scratch,
            "notice": self.notice,
        }
