import logging
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .domain import ALL_CATEGORIES, UNCATEGORIZED, Category, Note, SessionRequiredError
from .services import TreeStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOTES_ROOT = "notes"
CATEGORIES_ROOT = "categories"


def resolve_category(selected_filter: Optional[str]) -> str:
    """Category given to a note written while ``selected_filter`` is active."""
    if not selected_filter or selected_filter == ALL_CATEGORIES:
        return UNCATEGORIZED
    return selected_filter


def filter_notes(notes: List[Note], selected_filter: Optional[str]) -> List[Note]:
    """Client-side projection of a snapshot onto the selected category."""
    if not selected_filter or selected_filter == ALL_CATEGORIES:
        return list(notes)
    return [n for n in notes if n.category == selected_filter]


def _is_blank(text: Optional[str]) -> bool:
    return text is None or text.strip() == ""


class LiveQuery(Generic[T]):
    """
    Cancellable handle on a live store subscription.

    Each emission is a full snapshot already mapped to typed values. The
    handle remembers the latest one and hands each new one to the callbacks
    registered with ``on_snapshot``.
    """

    def __init__(self, store: TreeStore, path: str, mapper: Callable[[Dict[str, Dict[str, Any]]], T]):
        self.path = path
        self._mapper = mapper
        self._callbacks: List[Callable[[T], None]] = []
        self.latest: Optional[T] = None
        self.cancelled = False
        self._unsubscribe = store.subscribe(path, self._on_raw)

    def _on_raw(self, raw: Dict[str, Dict[str, Any]]):
        if self.cancelled:
            return
        self.latest = self._mapper(raw)
        for callback in list(self._callbacks):
            callback(self.latest)

    def on_snapshot(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def remove():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        self._unsubscribe()
        self._callbacks.clear()
        logger.debug("Subscription to %s released", self.path)


class NoteRepository:
    """Reads and writes one user's notes and categories in the tree store."""

    def __init__(self, store: TreeStore):
        self.store = store

    @staticmethod
    def _require(uid: str):
        if not uid:
            raise SessionRequiredError("No authenticated user")

    def subscribe_notes(self, uid: str) -> LiveQuery[List[Note]]:
        self._require(uid)
        return LiveQuery(
            self.store,
            f"{NOTES_ROOT}/{uid}",
            lambda raw: [Note.from_record(key, record) for key, record in raw.items()],
        )

    def subscribe_categories(self, uid: str) -> LiveQuery[List[Category]]:
        self._require(uid)
        return LiveQuery(
            self.store,
            f"{CATEGORIES_ROOT}/{uid}",
            lambda raw: [Category.from_record(key, record) for key, record in raw.items()],
        )

    def add_note(self, uid: str, content: str, selected_filter: Optional[str] = ALL_CATEGORIES) -> Optional[str]:
        """Push a new note; returns its id, or None when the content is blank."""
        self._require(uid)
        if _is_blank(content):
            return None
        return self.store.push(
            f"{NOTES_ROOT}/{uid}",
            {"content": content, "category": resolve_category(selected_filter)},
        )

    def update_note(self, uid: str, note_id: str, content: str,
                    selected_filter: Optional[str] = ALL_CATEGORIES) -> bool:
        self._require(uid)
        if _is_blank(content) or not note_id:
            return False
        self.store.update(
            f"{NOTES_ROOT}/{uid}/{note_id}",
            {"content": content, "category": resolve_category(selected_filter)},
        )
        return True

    def delete_note(self, uid: str, note_id: Optional[str]) -> bool:
        self._require(uid)
        if not note_id:
            return False
        self.store.remove(f"{NOTES_ROOT}/{uid}/{note_id}")
        return True

    def add_category(self, uid: str, name: str) -> Optional[str]:
        """
        Push a new category; returns its id, or None when the name is blank.

        Unlike note content, which is stored exactly as typed, the name is
        stored with surrounding whitespace stripped.
        """
        self._require(uid)
        if _is_blank(name):
            return None
        return self.store.push(f"{CATEGORIES_ROOT}/{uid}", {"name": name.strip()})
