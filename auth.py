"""
Authentication and authorization.

Identity comes from Google OAuth (or the development login). A Google
profile is only admitted when its email is on the approved-email list; the
role comes from that list, never from the profile. The session stores
nothing but the user id.
"""
import logging
from typing import Iterable, NamedTuple, Optional

from authlib.integrations.starlette_client import OAuth
from fastapi import Depends, HTTPException, Request, status

from config import Settings
from database import get_storage
from schemas import UserCreate
from storage import Storage

logger = logging.getLogger(__name__)

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
SESSION_KEY = "user_id"

DEV_EMAIL = "dev@example.com"
DEV_USER = UserCreate(
    name="Development User",
    email=DEV_EMAIL,
    role="admin",
    google_id="dev-google-id",
)


class AdmissionError(Exception):
    """Raised when an OAuth profile may not log in."""


class OAuthProfile(NamedTuple):
    id: str
    email: Optional[str]
    name: str
    picture: Optional[str] = None
    email_verified: Optional[bool] = None

    @classmethod
    def from_userinfo(cls, userinfo: dict) -> "OAuthProfile":
        email = userinfo.get("email")
        return cls(
            id=userinfo["sub"],
            email=email,
            name=userinfo.get("name") or email or "",
            picture=userinfo.get("picture"),
            email_verified=userinfo.get("email_verified"),
        )


def build_oauth(settings: Settings) -> Optional[OAuth]:
    if not settings.oauth_enabled:
        logger.warning("Google OAuth credentials not found. Only the development login is available.")
        return None
    oauth = OAuth()
    oauth.register(
        name="google",
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        server_metadata_url=GOOGLE_DISCOVERY_URL,
        client_kwargs={"scope": "openid email profile"},
    )
    return oauth


def admit_oauth_profile(storage: Storage, profile: OAuthProfile) -> dict:
    """Map a Google profile to a local user, creating it on first login."""
    if not profile.email:
        raise AdmissionError("Email not provided by Google OAuth")
    if profile.email_verified is False:
        raise AdmissionError("Email not verified by Google")

    approved = storage.get_approved_email(profile.email)
    if not approved:
        logger.warning("Rejected login for unapproved email %s", profile.email)
        raise AdmissionError("Email not approved for access")

    user = storage.get_user_by_google_id(profile.id)
    if not user:
        user = storage.create_user(UserCreate(
            name=profile.name,
            email=profile.email,
            picture=profile.picture,
            google_id=profile.id,
            role=approved["role"],
        ))
        logger.info("Created %s user %s for %s", user["role"], user["id"], user["email"])
    return user


def dev_login_user(storage: Storage) -> dict:
    user = storage.get_user_by_email(DEV_EMAIL)
    if not user:
        logger.info("Creating development user...")
        user = storage.create_user(DEV_USER)
    return user


# ----------------------- Predicates -----------------------

def has_role(user: Optional[dict], roles: Iterable[str]) -> bool:
    return user is not None and user.get("role") in roles


def can_view_order(user: dict, order: dict) -> bool:
    if user["role"] == "admin" or order["userId"] == user["id"]:
        return True
    return user["role"] == "rider" and order.get("riderId") == user["id"]


def can_rider_update(user: dict, order: dict) -> bool:
    return user["role"] == "rider" and order.get("riderId") == user["id"]


# ----------------------- Session -----------------------

def login(request: Request, user: dict):
    request.session[SESSION_KEY] = user["id"]
    logger.info("Logged in user %s", user["id"])


def logout(request: Request):
    request.session.clear()


def session_user_id(request: Request) -> Optional[str]:
    return request.session.get(SESSION_KEY)


def optional_user(
    request: Request,
    user_id: Optional[str] = Depends(session_user_id),
    storage: Storage = Depends(get_storage),
) -> Optional[dict]:
    """The session user, ``None`` when logged out.

    A session pointing at a user that no longer exists is an error, not an
    anonymous request: the session is dropped and 401 is raised.
    """
    if user_id is None:
        return None
    user = storage.get_user(user_id)
    if not user:
        logger.error("User not found during session lookup: %s", user_id)
        request.session.clear()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"User {user_id} not found")
    return user


def current_user(user: Optional[dict] = Depends(optional_user)) -> dict:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def require_role(*roles: str):
    def dependency(user: dict = Depends(current_user)) -> dict:
        if not has_role(user, roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user
    return dependency
