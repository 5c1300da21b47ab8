# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from gameshelf.config import USERS_COLLECTION
from gameshelf.core.database import DocumentDatabase, SERVER_TIMESTAMP
from gameshelf.core.errors import ErrorInfo, ErrorKind, ProfileCreationFailed
from gameshelf.core.identity import AuthStateHub, IdentityProvider, Unsubscribe, get_auth_hub
from gameshelf.models.user import (
    AuthUser, UserProfile, SessionState,
    SignedOut, SessionLoading, SignedIn, SessionError,
    profile_from_user,
)

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

SessionCallback = Callable[[SessionState], None]

# ===== CORE BUSINESS LOGIC =====
class SessionStore:
    """
    Tracks the signed-in identity and materializes the user's profile document on first sign-in.

    All SessionStores built on the same provider share one provider subscription (see AuthStateHub).
    Must be used from within a running event loop, since sign-ins resolve the profile asynchronously.
    """

    def __init__(self, provider: IdentityProvider, documents: DocumentDatabase, hub: Optional[AuthStateHub] = None):
        self._provider = provider
        # None means the process-wide hub, looked up on every start
        self._hub = hub
        self._documents = documents
        self._state: SessionState = SessionLoading()
        self._detach: Optional[Unsubscribe] = None
        self._callbacks: List[SessionCallback] = []
        self._ensured_uids: Set[str] = set()
        self._pending: Optional[asyncio.Task] = None
        # Bumped on every provider event so late profile resolutions can be discarded
        self._generation = 0

    @property
    def is_started(self) -> bool:
        return self._detach is not None

    def start(self) -> None:
        """Attaches to the shared identity subscription. Repeated calls are no-ops."""
        if self._detach is None:
            hub = self._hub or get_auth_hub(self._provider)
            self._detach = hub.attach(self._on_auth_change, self._on_auth_error)

    def stop(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def get_current_session(self) -> SessionState:
        self.start()
        return self._state

    def subscribe(self, callback: SessionCallback) -> Unsubscribe:
        """Registers a callback for every session state change."""
        self._callbacks.append(callback)
        self.start()

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
        return unsubscribe

    async def wait_until_settled(self) -> SessionState:
        """Waits for any pending profile resolution and returns the resulting state."""
        self.start()
        while self._pending is not None and not self._pending.done():
            await asyncio.shield(self._pending)
        return self._state

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"❌ [{self.__class__.__name__}] Session callback failed: {e}", exc_info=True)

    def _on_auth_change(self, user: Optional[AuthUser]) -> None:
        self._generation += 1
        if user is None:
            logger.info(f"[{self.__class__.__name__}] Session is signed out.")
            self._set_state(SignedOut())
            return

        self._set_state(SessionLoading())
        self._pending = asyncio.get_running_loop().create_task(self._resolve_sign_in(user, self._generation))

    def _on_auth_error(self, error: Exception) -> None:
        self._generation += 1
        info = ErrorInfo(
            kind=ErrorKind.AUTH_STATE_FAILED,
            message=f"Failed to subscribe to the authentication state: {error}",
            cause=error,
        )
        logger.error(f"❌ [{self.__class__.__name__}] {info.message}")
        self._set_state(SessionError(info))

    def _profile_path(self, uid: str) -> str:
        return f"{USERS_COLLECTION}/{uid}"

    async def _ensure_profile(self, user: AuthUser) -> None:
        """Creates users/{uid} unless it already exists. Never overwrites an existing profile."""
        data: Dict[str, Any] = {**profile_from_user(user), 'created_at': SERVER_TIMESTAMP}
        try:
            await self._documents.create_document_if_absent(self._profile_path(user['uid']), data)
        except Exception as e:
            raise ProfileCreationFailed(f"Could not create profile for uid={user['uid']}: {e}") from e

    async def _load_profile(self, user: AuthUser) -> UserProfile:
        profile = profile_from_user(user)
        stored = await self._documents.get_document(self._profile_path(user['uid']))
        if stored:
            profile['created_at'] = stored.get('created_at')
        return profile

    async def _resolve_sign_in(self, user: AuthUser, generation: int) -> None:
        uid = user['uid']
        profile = profile_from_user(user)
        try:
            if uid not in self._ensured_uids:
                await self._ensure_profile(user)
                self._ensured_uids.add(uid)
            profile = await self._load_profile(user)
        except ProfileCreationFailed as e:
            # Non-fatal: the user is still signed in, just without a stored profile
            logger.error(f"❌ [{self.__class__.__name__}] {e}", exc_info=True)
        except Exception as e:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Could not read profile for uid={uid}: {e}")

        if generation != self._generation:
            logger.debug(f"[{self.__class__.__name__}] Discarding sign-in resolution for uid={uid}; session changed meanwhile.")
            return
        logger.info(f"✅ [{self.__class__.__name__}] Signed in as uid={uid}")
        self._set_state(SignedIn(profile))
