# ===== IMPORTS & DEPENDENCIES =====
import logging
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from gameshelf.models.user import AuthUser

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[AuthUser]], None]
AuthErrorListener = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


# ===== TYPES & INTERFACES =====
class IdentityProvider(Protocol):
    """Anything that reports sign-in state changes to listeners."""

    def add_listener(self, on_change: AuthListener, on_error: AuthErrorListener) -> Unsubscribe:
        ...


# ===== CORE BUSINESS LOGIC =====
class LocalIdentityProvider:
    """
    In-process identity provider. Like most hosted auth SDKs, a new listener is
    immediately told the current user (None when signed out).
    """

    def __init__(self, user: Optional[AuthUser] = None):
        self._user = user
        self._listeners: List[Tuple[AuthListener, AuthErrorListener]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, on_change: AuthListener, on_error: AuthErrorListener) -> Unsubscribe:
        entry = (on_change, on_error)
        self._listeners.append(entry)
        on_change(self._user)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)
        return unsubscribe

    def sign_in(self, user: AuthUser) -> None:
        self._user = user
        logger.info(f"[{self.__class__.__name__}] Signed in uid={user['uid']}")
        for on_change, _ in list(self._listeners):
            on_change(user)

    def sign_out(self) -> None:
        self._user = None
        logger.info(f"[{self.__class__.__name__}] Signed out")
        for on_change, _ in list(self._listeners):
            on_change(None)

    def fail(self, error: Exception) -> None:
        """Reports a provider-side failure to every listener."""
        for _, on_error in list(self._listeners):
            on_error(error)


class AuthStateHub:
    """
    One shared subscription to an identity provider, reference counted.
    The provider subscription is opened by the first attach and closed by the last detach.
    """

    def __init__(self, provider: IdentityProvider):
        self._provider = provider
        self._listeners: List[Tuple[AuthListener, AuthErrorListener]] = []
        self._unsubscribe: Optional[Unsubscribe] = None
        self._last_user: Optional[AuthUser] = None
        self._has_state = False

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def _dispatch(self, user: Optional[AuthUser]) -> None:
        self._last_user = user
        self._has_state = True
        for on_change, _ in list(self._listeners):
            on_change(user)

    def _dispatch_error(self, error: Exception) -> None:
        logger.error(f"❌ [{self.__class__.__name__}] Identity provider error: {error}")
        for _, on_error in list(self._listeners):
            on_error(error)

    def attach(self, on_change: AuthListener, on_error: AuthErrorListener) -> Unsubscribe:
        """Adds a listener and returns its detach function."""
        entry = (on_change, on_error)
        self._listeners.append(entry)

        if self._unsubscribe is None:
            logger.debug(f"[{self.__class__.__name__}] Opening identity provider subscription")
            self._unsubscribe = self._provider.add_listener(self._dispatch, self._dispatch_error)
        elif self._has_state:
            # Late listeners get the current state, as they would from the provider itself
            on_change(self._last_user)

        def detach() -> None:
            if entry not in self._listeners:
                return
            self._listeners.remove(entry)
            if not self._listeners and self._unsubscribe is not None:
                logger.debug(f"[{self.__class__.__name__}] Last listener detached; closing identity provider subscription")
                self._unsubscribe()
                self._unsubscribe = None
                self._has_state = False
                _release_hub(self)
        return detach


_hubs: Dict[IdentityProvider, AuthStateHub] = {}


def get_auth_hub(provider: IdentityProvider) -> AuthStateHub:
    """Returns the process-wide hub for a provider, creating it on first use. Hubs are dropped again when their last listener detaches."""
    hub = _hubs.get(provider)
    if hub is None:
        hub = AuthStateHub(provider)
        _hubs[provider] = hub
    return hub


def _release_hub(hub: AuthStateHub) -> None:
    """Forgets a hub once nothing listens through it."""
    if _hubs.get(hub._provider) is hub:
        del _hubs[hub._provider]
