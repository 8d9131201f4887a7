import logging
import threading
import time
from typing import Callable, Dict, Optional

from .repository import NoteRepository
from .services import AuthClient, IdentityService, TreeStore
from .session import Navigator, SessionController
from .utils import make_id
from .workspace import MemoryClipboard, WorkspaceView

logger = logging.getLogger(__name__)


class ClientContext:
    """Everything one browser holds: its auth handle, screen and workspace state."""

    def __init__(self, client_id: str, identity: IdentityService, store: TreeStore,
                 min_password_length: int = 6):
        self.client_id = client_id
        self.lock = threading.RLock()
        self.auth = AuthClient(identity)
        self.navigator = Navigator()
        self.clipboard = MemoryClipboard()
        self.controller = SessionController(self.auth, self.navigator, min_password_length)
        self.workspace = WorkspaceView(self.controller, NoteRepository(store), self.clipboard, self.navigator)
        self.last_seen = 0.0
        # open live sockets sharing this workspace
        self.live_consumers = 0
        self.controller.start()

    def attach(self) -> int:
        with self.lock:
            self.live_consumers += 1
            return self.live_consumers

    def detach(self) -> int:
        """Drop one live consumer; the workspace unmounts when the last one leaves."""
        with self.lock:
            self.live_consumers = max(0, self.live_consumers - 1)
            if self.live_consumers == 0:
                self.workspace.unmount()
            return self.live_consumers

    def close(self):
        with self.lock:
            self.workspace.unmount()
            self.controller.stop()
            self.auth.sign_out()


class ClientRegistry:
    """
    Issues client ids and tracks one ClientContext per issued id.

    Only ids handed out by ``create`` resolve; an unknown id is treated like a
    missing cookie. Contexts idle for longer than ``idle_seconds`` are closed
    on the next ``create``, and past ``max_clients`` the least recently seen
    context is evicted. Contexts with open live sockets are never evicted.
    """

    def __init__(self, identity: IdentityService, store: TreeStore, min_password_length: int = 6,
                 max_clients: int = 1000, idle_seconds: int = 3600,
                 clock: Callable[[], float] = time.monotonic):
        self.identity = identity
        self.store = store
        self.min_password_length = min_password_length
        self.max_clients = max_clients
        self.idle_seconds = idle_seconds
        self.clock = clock
        self.lock = threading.Lock()
        self.clients: Dict[str, ClientContext] = {}

    def create(self) -> ClientContext:
        with self.lock:
            self._sweep_locked()
            client_id = make_id("client")
            context = ClientContext(client_id, self.identity, self.store, self.min_password_length)
            context.last_seen = self.clock()
            self.clients[client_id] = context
            self._enforce_cap_locked(keep=context)
            logger.debug("New client context", extra={"client": client_id})
            return context

    def get(self, client_id: str) -> Optional[ClientContext]:
        with self.lock:
            context = self.clients.get(client_id)
            if context is not None:
                context.last_seen = self.clock()
            return context

    def sweep(self) -> int:
        """Close contexts idle for longer than ``idle_seconds``; returns how many."""
        with self.lock:
            return self._sweep_locked()

    def _sweep_locked(self) -> int:
        cutoff = self.clock() - self.idle_seconds
        idle = [c for c in self.clients.values() if c.last_seen < cutoff and not c.live_consumers]
        for context in idle:
            self._evict_locked(context, "idle")
        return len(idle)

    def _enforce_cap_locked(self, keep: ClientContext):
        excess = len(self.clients) - self.max_clients
        if excess <= 0:
            return
        candidates = sorted(
            (c for c in self.clients.values() if c is not keep and not c.live_consumers),
            key=lambda c: c.last_seen,
        )
        for context in candidates[:excess]:
            self._evict_locked(context, "over capacity")

    def _evict_locked(self, context: ClientContext, reason: str):
        del self.clients[context.client_id]
        context.close()
        logger.info("Closed client context (%s)", reason, extra={"client": context.client_id})

    def close(self):
        with self.lock:
            for context in self.clients.values():
                context.close()
            self.clients.clear()

    def __len__(self):
        return len(self.clients)
