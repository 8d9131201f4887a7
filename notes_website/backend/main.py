import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from .clients import ClientContext, ClientRegistry
from .config import Settings, get_settings
from .domain import SessionRequiredError, StoreError
from .logging_setup import setup_logging
from .models import (CategoryDraft, EditText, FilterSelection, NoteDraft,
                     ScratchText, SessionState, UserCreds, WorkspaceState)
from .services import IdentityService, TreeStore
from .session import Screen
from .utils import time_now

logger = logging.getLogger(__name__)

# Static frontend
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
WEBSITE_DIR = os.path.join(BASE_DIR, "..", "website")


def get_client(request: Request, response: Response) -> ClientContext:
    """Resolve the caller's client context from its cookie, issuing a new one when it is missing or unknown."""
    settings: Settings = request.app.state.settings
    registry: ClientRegistry = request.app.state.clients
    client_id = request.cookies.get(settings.COOKIE_NAME)
    client = registry.get(client_id) if client_id else None
    if client is None:
        client = registry.create()
        response.set_cookie(settings.COOKIE_NAME, client.client_id, httponly=True, samesite="lax")
    return client


def mounted_workspace(client: ClientContext = Depends(get_client)) -> ClientContext:
    """Make sure the caller's workspace is mounted; 401 when there is no session."""
    with client.lock:
        if not client.workspace.mount():
            raise SessionRequiredError("Please log in first")
    return client


def workspace_state(client: ClientContext) -> WorkspaceState:
    state = client.workspace.state()
    state["clipboard"] = client.clipboard.take()
    return WorkspaceState(**state)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(settings)
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)

    identity = IdentityService(
        settings.users_db_path,
        min_password_length=settings.MIN_PASSWORD_LENGTH,
        max_failed_attempts=settings.MAX_FAILED_ATTEMPTS,
        lockout_seconds=settings.LOCKOUT_SECONDS,
    )
    store = TreeStore(settings.store_db_path)
    clients = ClientRegistry(
        identity, store, settings.MIN_PASSWORD_LENGTH,
        max_clients=settings.MAX_CLIENTS,
        idle_seconds=settings.CLIENT_IDLE_SECONDS,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Notes API starting up, data_dir=%s, users=%d", settings.DATA_DIR, len(identity.users))
        yield
        clients.close()
        logger.info("Notes API shutting down")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Notes with categories, backed by a live per-user tree store",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.identity = identity
    app.state.store = store
    app.state.clients = clients

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        if request.url.path != "/health":
            logger.info(
                "%s %s -> %d (%.1f ms)", request.method, request.url.path,
                response.status_code, (time.time() - start) * 1000,
                extra={"client": request.cookies.get(settings.COOKIE_NAME, "-")},
            )
        return response

    @app.exception_handler(SessionRequiredError)
    async def session_required_handler(request: Request, exc: SessionRequiredError):
        return JSONResponse(
            status_code=401,
            content={"success": False, "error": str(exc), "screen": Screen.LOGIN.value},
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    if os.path.exists(WEBSITE_DIR):
        app.mount("/static", StaticFiles(directory=WEBSITE_DIR), name="static")

    # -------------------------------
    # Session screen
    # -------------------------------

    @app.get("/")
    async def read_root():
        index_path = os.path.join(WEBSITE_DIR, "index.html")
        return FileResponse(index_path) if os.path.exists(index_path) else {"message": "Notes API is running"}

    @app.get("/session", response_model=SessionState)
    async def session_state(client: ClientContext = Depends(get_client)):
        return SessionState(**client.controller.state())

    @app.post("/login", response_model=SessionState)
    async def login(creds: UserCreds, client: ClientContext = Depends(get_client)):
        with client.lock:
            client.controller.login(creds.email, creds.password)
            return SessionState(**client.controller.state())

    @app.post("/signup", response_model=SessionState)
    async def signup(creds: UserCreds, client: ClientContext = Depends(get_client)):
        with client.lock:
            client.controller.signup(creds.email, creds.password)
            return SessionState(**client.controller.state())

    @app.post("/logout", response_model=SessionState)
    async def logout(client: ClientContext = Depends(get_client)):
        with client.lock:
            client.controller.sign_out()
            return SessionState(**client.controller.state())

    # -------------------------------
    # Workspace screen
    # -------------------------------

    @app.get("/workspace", response_model=WorkspaceState)
    async def get_workspace(client: ClientContext = Depends(mounted_workspace)):
        return workspace_state(client)

    @app.post("/workspace/filter", response_model=WorkspaceState)
    async def select_filter(selection: FilterSelection, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.select_filter(selection.filter)
            return workspace_state(client)

    @app.post("/workspace/notes", response_model=WorkspaceState)
    async def add_note(draft: NoteDraft, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.add_note(draft.content)
            return workspace_state(client)

    @app.post("/workspace/categories", response_model=WorkspaceState)
    async def add_category(draft: CategoryDraft, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.add_category(draft.name)
            return workspace_state(client)

    @app.post("/workspace/notes/{note_id}/edit", response_model=WorkspaceState)
    async def begin_edit(note_id: str, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.begin_edit(note_id)
            return workspace_state(client)

    @app.post("/workspace/notes/{note_id}/save", response_model=WorkspaceState)
    async def save_edit(note_id: str, edit: EditText, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.save_edit(note_id, edit.content)
            return workspace_state(client)

    @app.post("/workspace/notes/{note_id}/cancel", response_model=WorkspaceState)
    async def cancel_edit(note_id: str, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.cancel_edit(note_id)
            return workspace_state(client)

    @app.post("/workspace/notes/{note_id}/delete", response_model=WorkspaceState)
    async def request_delete(note_id: str, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.request_delete(note_id)
            return workspace_state(client)

    @app.post("/workspace/delete/confirm", response_model=WorkspaceState)
    async def confirm_delete(client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.confirm_delete()
            return workspace_state(client)

    @app.post("/workspace/delete/cancel", response_model=WorkspaceState)
    async def cancel_delete(client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.cancel_delete()
            return workspace_state(client)

    @app.post("/workspace/notes/{note_id}/copy", response_model=WorkspaceState)
    async def copy_note(note_id: str, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.copy_note(note_id)
            return workspace_state(client)

    @app.post("/workspace/notes/{note_id}/duplicate", response_model=WorkspaceState)
    async def create_from_note(note_id: str, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.create_from_note(note_id)
            return workspace_state(client)

    @app.put("/workspace/scratch", response_model=WorkspaceState)
    async def set_scratch(scratch: ScratchText, client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.set_scratch(scratch.text)
            return workspace_state(client)

    @app.post("/workspace/scratch/copy", response_model=WorkspaceState)
    async def copy_scratch(client: ClientContext = Depends(mounted_workspace)):
        with client.lock:
            client.workspace.copy_scratch()
            return workspace_state(client)

    @app.websocket("/workspace/live")
    async def workspace_live(websocket: WebSocket):
        """Push the workspace state after every snapshot until the socket closes."""
        client_id = websocket.cookies.get(settings.COOKIE_NAME)
        await websocket.accept()
        client = clients.get(client_id) if client_id else None
        mounted = False
        if client is not None:
            with client.lock:
                mounted = client.workspace.mount()
                if mounted:
                    client.attach()
        if not mounted:
            await websocket.send_json({"screen": Screen.LOGIN.value})
            await websocket.close(code=4401)
            return

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        remove = client.workspace.on_change(lambda view: loop.call_soon_threadsafe(queue.put_nowait, None))

        async def pump():
            while True:
                with client.lock:
                    state = client.workspace.state()
                await websocket.send_json(state)
                await queue.get()

        async def receive():
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(pump()), asyncio.create_task(receive())]
        logger.info("Live workspace connected", extra={"client": client_id})
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                error = task.exception()
                if error is not None and not isinstance(error, WebSocketDisconnect):
                    logger.error("Live workspace failed: %s", error, exc_info=error, extra={"client": client_id})
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            remove()
            remaining = client.detach()
            logger.info("Live workspace disconnected, %d still open", remaining, extra={"client": client_id})

    # -------------------------------
    # System endpoints
    # -------------------------------

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": time_now(),
            "users_count": len(identity.users),
            "active_sessions": len(identity.active),
            "clients": len(clients),
            "live_subscriptions": store.listener_count(),
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
