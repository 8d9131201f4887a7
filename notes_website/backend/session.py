import enum
import logging
from typing import Callable, Dict, List, Optional

from .domain import AuthError, Session
from .services import AuthClient

logger = logging.getLogger(__name__)

MSG_MISSING_CREDENTIALS = "Enter your email and password."
MSG_INVALID_EMAIL = "The email address is badly formatted."
MSG_USER_NOT_FOUND = "No user found with this email."
MSG_WRONG_PASSWORD = "The password is incorrect."
MSG_TOO_MANY_REQUESTS = "Too many attempts. Please try again later."
MSG_EMAIL_IN_USE = "This email address is already registered."
MSG_WEAK_PASSWORD = "The password must be at least {min_length} characters."


class Screen(str, enum.Enum):
    LOGIN = "login"
    WORKSPACE = "workspace"


class Navigator:
    """Which of the two screens a client is on."""

    def __init__(self, initial: Screen = Screen.LOGIN):
        self.current = initial

    def go(self, screen: Screen):
        if screen != self.current:
            logger.debug("Navigate %s -> %s", self.current.value, screen.value)
        self.current = screen


class FormErrors:
    """Field-scoped messages shown on the login form."""

    def __init__(self):
        self.email = ""
        self.password = ""
        self.general = ""

    def clear(self):
        self.email = ""
        self.password = ""
        self.general = ""

    def to_dict(self) -> Dict[str, str]:
        return {"email": self.email, "password": self.password, "general": self.general}


class SessionController:
    """
    Login, signup and sign-out for one client.

    Provider errors are classified into form messages; nothing raised by the
    identity service escapes these methods. While started, the controller
    follows session changes and moves the navigator between the login screen
    and the workspace.
    """

    def __init__(self, auth: AuthClient, navigator: Navigator, min_password_length: int = 6):
        self.auth = auth
        self.navigator = navigator
        self.min_password_length = min_password_length
        self.errors = FormErrors()
        self.notice = ""
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: List[Callable[[Optional[Session]], None]] = []

    @property
    def session(self) -> Optional[Session]:
        return self.auth.current_session

    @property
    def is_authenticated(self) -> bool:
        return self.auth.current_session is not None

    def start(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.auth.on_session_change(self._on_session_change)

    def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add_listener(self, callback: Callable[[Optional[Session]], None]):
        self._listeners.append(callback)

    def _on_session_change(self, session: Optional[Session]):
        if session is not None:
            self.navigator.go(Screen.WORKSPACE)
        else:
            self.navigator.go(Screen.LOGIN)
        for callback in list(self._listeners):
            callback(session)

    def _validate_locally(self, email: str, password: str) -> bool:
        self.errors.clear()
        self.notice = ""
        if not email or not password:
            self.errors.general = MSG_MISSING_CREDENTIALS
            return False
        return True

    def login(self, email: str, password: str) -> bool:
        if not self._validate_locally(email, password):
            return False
        try:
            session = self.auth.sign_in(email, password)
        except AuthError as e:
            logger.info("Login failed: %s", e.code)
            if e.code == "auth/invalid-email":
                self.errors.email = MSG_INVALID_EMAIL
            elif e.code == "auth/user-not-found":
                self.errors.email = MSG_USER_NOT_FOUND
            elif e.code == "auth/wrong-password":
                self.errors.password = MSG_WRONG_PASSWORD
            elif e.code == "auth/too-many-requests":
                self.errors.general = MSG_TOO_MANY_REQUESTS
            else:
                self.errors.general = f"Login failed. Error code: {e.code}"
            return False
        except Exception:
            logger.exception("Unexpected error during login")
            self.errors.general = "An unexpected error occurred while logging in."
            return False

        logger.info("Login succeeded for %s", session.uid)
        self.navigator.go(Screen.WORKSPACE)
        return True

    def signup(self, email: str, password: str) -> bool:
        if not self._validate_locally(email, password):
            return False
        try:
            session = self.auth.sign_up(email, password)
        except AuthError as e:
            logger.info("Signup failed: %s", e.code)
            if e.code == "auth/email-already-in-use":
                self.errors.email = MSG_EMAIL_IN_USE
            elif e.code == "auth/invalid-email":
                self.errors.email = MSG_INVALID_EMAIL
            elif e.code == "auth/weak-password":
                self.errors.password = MSG_WEAK_PASSWORD.format(min_length=self.min_password_length)
            else:
                self.errors.general = f"Registration failed. Error code: {e.code}"
            return False
        except Exception:
            logger.exception("Unexpected error during signup")
            self.errors.general = "An unexpected error occurred while registering."
            return False

        self.notice = f"{session.email} has been registered."
        return True

    def sign_out(self) -> bool:
        try:
            self.auth.sign_out()
        except Exception as e:
            logger.error("Sign-out failed: %s", e, exc_info=True)
            self.notice = "Sign-out failed."
            return False
        self.navigator.go(Screen.LOGIN)
        return True

    def state(self) -> Dict[str, object]:
        return {
            "screen": self.navigator.current.value,
            "authenticated": self.is_authenticated,
            "user": self.session.to_dict() if self.session else None,
            "errors": self.errors.to_dict(),
            "notice": self.notice,
        }
