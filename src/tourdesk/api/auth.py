"""Session and cron-secret authentication dependencies."""
import hmac
import logging
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException, status
from sqlmodel import Session, select

from tourdesk.config import Settings, get_settings
from tourdesk.db.engine import get_session
from tourdesk.models.booking import User

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMIN"
SESSION_COOKIE = "session_token"
SESSION_HEADER = "X-Session-Token"


class AuthError(HTTPException):
    def __init__(self, detail: str, code: int = status.HTTP_401_UNAUTHORIZED) -> None:
        super().__init__(status_code=code, detail=detail)


def get_current_user(
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    header_token: Optional[str] = Header(default=None, alias=SESSION_HEADER),
    session: Session = Depends(get_session),
) -> Optional[User]:
    """Resolve the caller's User from the session cookie or header, if any."""
    token = session_token or header_token
    if not token:
        return None
    return session.exec(select(User).where(User.session_token == token)).first()


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise AuthError("Unauthorized")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != ADMIN_ROLE:
        raise AuthError("Admin only", code=status.HTTP_403_FORBIDDEN)
    return user


def verify_cron_secret(token: Optional[str], secret: str) -> bool:
    """Constant-time comparison; an unset secret never matches."""
    if not token or not secret:
        return False
    if len(token) != len(secret):
        return False
    return hmac.compare_digest(token.encode(), secret.encode())


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip()


def authorize_trigger(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    user: Optional[User] = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Gate for the write-back trigger: the cron bearer secret or an admin session.

    Returns:
        "cron" or "manual", for logging the trigger source.
    """
    if verify_cron_secret(_bearer(authorization), settings.cron_secret):
        return "cron"
    if user is None:
        raise AuthError("Unauthorized")
    if user.role != ADMIN_ROLE:
        raise AuthError("Admin only", code=status.HTTP_403_FORBIDDEN)
    return "manual"
