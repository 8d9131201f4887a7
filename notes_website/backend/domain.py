from typing import Any, Dict, Optional

UNCATEGORIZED = "Uncategorized"
ALL_CATEGORIES = "all"


class Note:
    """Represents a single note object."""

    def __init__(self, id: str, content: str, category: str = UNCATEGORIZED):
        self.id = id
        self.content = content
        self.category = category

    @classmethod
    def from_record(cls, key: str, record: Dict[str, Any]) -> "Note":
        """Build a note from a raw store record, tolerating a missing category."""
        return cls(key, record.get("content", ""), record.get("category") or UNCATEGORIZED)

    def to_dict(self) -> Dict[str, str]:
        """Convert note to dictionary representation."""
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category,
        }

    def __eq__(self, other):
        return isinstance(other, Note) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Note({self.id!r}, {self.content!r}, {self.category!r})"


class Category:
    """A user-defined label notes can be filed under."""

    def __init__(self, id: str, name: str):
        self.id = id
        self.name = name

    @classmethod
    def from_record(cls, key: str, record: Dict[str, Any]) -> "Category":
        return cls(key, record.get("name", ""))

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name}

    def __eq__(self, other):
        return isinstance(other, Category) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Category({self.id!r}, {self.name!r})"


class Session:
    """The authenticated identity of one client."""

    def __init__(self, uid: str, email: str, token: Optional[str] = None):
        self.uid = uid
        self.email = email
        self.token = token

    def to_dict(self) -> Dict[str, str]:
        return {"uid": self.uid, "email": self.email}


class AuthError(Exception):
    """Authentication failure carrying a provider error code such as 'auth/wrong-password'."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class SessionRequiredError(Exception):
    """Raised when an operation needs an authenticated session and there is none."""
    pass


class StoreError(Exception):
    """Raised when a write to the tree store fails."""
    pass
