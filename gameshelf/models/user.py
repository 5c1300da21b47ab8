# ===== TYPES & INTERFACES =====

from dataclasses import dataclass
from typing import TypedDict, Optional, Any, Union

from gameshelf.core.errors import ErrorInfo


class AuthUser(TypedDict, total=False):
    """The identity reported by the identity provider."""
    uid: str
    email: Optional[str]
    display_name: Optional[str]
    photo_url: Optional[str]


class UserProfile(TypedDict, total=False):
    """
    The profile document stored at `users/{uid}`.
    Created exactly once per uid; `created_at` is never overwritten.
    """
    uid: str
    email: Optional[str]
    display_name: Optional[str]
    photo_url: Optional[str]
    created_at: Any


def profile_from_user(user: AuthUser) -> UserProfile:
    return UserProfile(
        uid=user['uid'],
        email=user.get('email'),
        display_name=user.get('display_name'),
        photo_url=user.get('photo_url'),
    )


# --- Session states ---
@dataclass(frozen=True)
class SignedOut:
    pass


@dataclass(frozen=True)
class SessionLoading:
    pass


@dataclass(frozen=True)
class SignedIn:
    profile: UserProfile

    @property
    def uid(self) -> str:
        return self.profile['uid']


@dataclass(frozen=True)
class SessionError:
    error: ErrorInfo


SessionState = Union[SignedOut, SessionLoading, SignedIn, SessionError]
