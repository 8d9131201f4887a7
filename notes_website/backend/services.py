import contextlib
import json
import logging
import secrets
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from .domain import AuthError, Session, StoreError
from .utils import hash_password, make_id, push_id, time_now

logger = logging.getLogger(__name__)

SessionListener = Callable[[Optional[Session]], None]
SnapshotListener = Callable[[Dict[str, Dict[str, Any]]], None]

FORBIDDEN_KEY_CHARS = set(".#$[]")


# -------------------------------
# Identity
# -------------------------------

class IdentityService:
    """
    Email/password identity provider with SQLite persistence.

    Users live in a SQLite table mirrored in memory for fast lookups. Session
    tokens are kept in memory only: a client context does not outlive the
    process, so neither do its sessions.

    Errors are raised as AuthError carrying a provider code:
    auth/invalid-email, auth/email-already-in-use, auth/weak-password,
    auth/user-not-found, auth/wrong-password, auth/too-many-requests.

    Repeated wrong passwords for one email lock that email out for
    ``lockout_seconds`` once ``max_failed_attempts`` is reached.
    """

    def __init__(self, db_path="users.db", min_password_length: int = 6,
                 max_failed_attempts: int = 5, lockout_seconds: int = 300,
                 clock: Callable[[], float] = time.monotonic):
        self.db_path = str(db_path)
        self.min_password_length = min_password_length
        self.max_failed_attempts = max_failed_attempts
        self.lockout_seconds = lockout_seconds
        self.clock = clock
        self.lock = threading.Lock()
        self._init_database()
        # {email: {id, password_hash, salt}}
        self.users: Dict[str, Dict[str, str]] = {}
        # {token: user_id}
        self.active: Dict[str, str] = {}
        # {email: (consecutive failures, time of first failure)}
        self.failures: Dict[str, Tuple[int, float]] = {}
        self._load_from_database()

    @contextlib.contextmanager
    def _get_db_connection(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        try:
            yield conn
        finally:
            conn.close()

    def _init_database(self):
        with self._get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                salt TEXT NOT NULL,
                created_time TEXT NOT NULL
            )
            """)
            conn.commit()

    def _load_from_database(self):
        with self._get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id, email, password_hash, salt FROM users")
            for user_id, email, password_hash, salt in cursor.fetchall():
                self.users[email] = {"id": user_id, "password_hash": password_hash, "salt": salt}

    @staticmethod
    def _normalize_email(email: str) -> str:
        try:
            return validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise AuthError("auth/invalid-email", str(e))

    def sign_up(self, email: str, password: str) -> Session:
        """
        Register a new user.

        Returns a Session without a token: creating an account does not sign
        the user in.
        """
        email = self._normalize_email(email)
        with self.lock:
            if email in self.users:
                raise AuthError("auth/email-already-in-use", "Email already exists")
            if len(password) < self.min_password_length:
                raise AuthError(
                    "auth/weak-password",
                    f"Password should be at least {self.min_password_length} characters",
                )

            uid = make_id("usr")
            salt = secrets.token_hex(8)
            password_hash = hash_password(password, salt)
            with self._get_db_connection() as conn:
                conn.execute(
                    "INSERT INTO users (id, email, password_hash, salt, created_time) VALUES (?, ?, ?, ?, ?)",
                    (uid, email, password_hash, salt, time_now()),
                )
                conn.commit()

            self.users[email] = {"id": uid, "password_hash": password_hash, "salt": salt}
            logger.info("Registered user %s", uid)
            return Session(uid, email)

    def sign_in(self, email: str, password: str) -> Session:
        """Authenticate a user and open a new session."""
        email = self._normalize_email(email)
        with self.lock:
            self._check_lockout(email)
            user = self.users.get(email)
            if user is None:
                raise AuthError("auth/user-not-found", "There is no user with this email")

            if user["password_hash"] != hash_password(password, user["salt"]):
                self._record_failure(email)
                raise AuthError("auth/wrong-password", "The password is invalid")

            self.failures.pop(email, None)
            token = make_id("sess")
            self.active[token] = user["id"]
            return Session(user["id"], email, token)

    def _check_lockout(self, email: str):
        count, since = self.failures.get(email, (0, 0.0))
        if count < self.max_failed_attempts:
            return
        if self.clock() - since < self.lockout_seconds:
            raise AuthError("auth/too-many-requests", "Too many unsuccessful login attempts")
        self.failures.pop(email, None)

    def _record_failure(self, email: str):
        now = self.clock()
        count, since = self.failures.get(email, (0, now))
        if now - since > self.lockout_seconds:
            count, since = 0, now
        self.failures[email] = (count + 1, since)

    def revoke(self, token: str) -> bool:
        """Remove a session; False when it was already gone."""
        with self.lock:
            if token not in self.active:
                return False
            del self.active[token]
            return True


class AuthClient:
    """
    One client's handle on the identity service.

    Tracks the client's current session and notifies listeners on every
    session transition.
    """

    def __init__(self, identity: IdentityService):
        self.identity = identity
        self.current_session: Optional[Session] = None
        self._listeners: List[SessionListener] = []

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_session(self, session: Optional[Session]):
        self.current_session = session
        for callback in list(self._listeners):
            callback(session)

    def sign_in(self, email: str, password: str) -> Session:
        session = self.identity.sign_in(email, password)
        previous = self.current_session
        if previous is not None and previous.token:
            self.identity.revoke(previous.token)
        self._set_session(session)
        return session

    def sign_up(self, email: str, password: str) -> Session:
        return self.identity.sign_up(email, password)

    def sign_out(self):
        session = self.current_session
        if session is None:
            return
        if session.token:
            self.identity.revoke(session.token)
        self._set_session(None)


# -------------------------------
# Hierarchical store
# -------------------------------

def split_path(path: str) -> List[str]:
    """Split a slash-delimited path, rejecting empty or malformed segments."""
    parts = [p for p in path.strip("/").split("/")]
    if not parts or any(not p for p in parts):
        raise ValueError(f"Invalid path: {path!r}")
    for part in parts:
        if FORBIDDEN_KEY_CHARS & set(part):
            raise ValueError(f"Invalid key {part!r} in path {path!r}")
    return parts


class TreeStore:
    """
    Tree-shaped key/value store persisted in SQLite.

    A record lives at ``parent/key``; a collection is the set of records
    sharing a parent path (``notes/{uid}`` for instance). Subscribers of a
    collection receive the full collection, ordered by key, right after
    subscribing and after every committed change to it.
    """

    def __init__(self, db_path="notes.db", id_factory: Callable[[], str] = push_id):
        self.db_path = str(db_path)
        self.id_factory = id_factory
        self.lock = threading.RLock()
        self._listeners: Dict[str, List[SnapshotListener]] = {}
        self._create_table()

    @contextlib.contextmanager
    def _get_db_connection(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.execute('PRAGMA journal_mode=WAL;')
        conn.execute('PRAGMA synchronous=FULL;')
        try:
            yield conn
        finally:
            conn.close()

    def _create_table(self):
        with self._get_db_connection() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                parent TEXT NOT NULL,
                key TEXT NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (parent, key)
            )
            """)
            conn.commit()

    def _write(self, description: str, statements: List[Tuple[str, tuple]]):
        with self._get_db_connection() as conn:
            try:
                for sql, params in statements:
                    conn.execute(sql, params)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error("Store write failed (%s): %s", description, e, exc_info=True)
                raise StoreError(f"Failed to {description}: {e}") from e

    def get(self, path: str) -> Dict[str, Dict[str, Any]]:
        """Return every record directly under ``path``, keyed and ordered by key."""
        parent = "/".join(split_path(path))
        with self._get_db_connection() as conn:
            rows = conn.execute(
                "SELECT key, data FROM records WHERE parent = ? ORDER BY key", (parent,)
            ).fetchall()
        return {key: json.loads(data) for key, data in rows}

    def push(self, path: str, record: Dict[str, Any]) -> str:
        """Insert ``record`` under a freshly generated, time-ordered key."""
        parent = "/".join(split_path(path))
        with self.lock:
            key = self.id_factory()
            self._write("push record", [(
                "INSERT INTO records (parent, key, data) VALUES (?, ?, ?)",
                (parent, key, json.dumps(record)),
            )])
        self._notify(parent)
        return key

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        """Merge ``partial`` into the record at ``path``, creating it if absent."""
        parts = split_path(path)
        if len(parts) < 2:
            raise ValueError(f"Cannot update a root collection: {path!r}")
        parent, key = "/".join(parts[:-1]), parts[-1]
        with self.lock:
            current = self.get(parent).get(key, {})
            current.update(partial)
            self._write("update record", [(
                "INSERT OR REPLACE INTO records (parent, key, data) VALUES (?, ?, ?)",
                (parent, key, json.dumps(current)),
            )])
        self._notify(parent)

    def remove(self, path: str) -> None:
        """Delete the record at ``path`` together with anything nested below it."""
        parts = split_path(path)
        full = "/".join(parts)
        statements = [(
            "DELETE FROM records WHERE parent = ? OR parent LIKE ? ESCAPE '\\'",
            (full, full.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "/%"),
        )]
        affected = [full]
        if len(parts) >= 2:
            parent = "/".join(parts[:-1])
            statements.append((
                "DELETE FROM records WHERE parent = ? AND key = ?", (parent, parts[-1]),
            ))
            affected.append(parent)
        with self.lock:
            self._write("remove record", statements)
        for p in affected:
            self._notify(p)

    def subscribe(self, path: str, callback: SnapshotListener) -> Callable[[], None]:
        """
        Register ``callback`` for snapshots of the collection at ``path``.

        The callback fires immediately with the current contents. The returned
        function unsubscribes; calling it twice is harmless.
        """
        parent = "/".join(split_path(path))
        with self.lock:
            self._listeners.setdefault(parent, []).append(callback)
        callback(self.get(parent))

        def unsubscribe():
            with self.lock:
                listeners = self._listeners.get(parent, [])
                if callback in listeners:
                    listeners.remove(callback)
                if not listeners:
                    self._listeners.pop(parent, None)

        return unsubscribe

    def listener_count(self, path: Optional[str] = None) -> int:
        with self.lock:
            if path is None:
                return sum(len(v) for v in self._listeners.values())
            return len(self._listeners.get("/".join(split_path(path)), []))

    def _notify(self, parent: str):
        with self.lock:
            listeners = list(self._listeners.get(parent, []))
        if not listeners:
            return
        snapshot = self.get(parent)
        for callback in listeners:
            try:
                callback(dict(snapshot))
            except Exception:
                logger.exception("Snapshot listener for %s failed", parent)
