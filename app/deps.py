"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.exceptions import AntiforgeryError, ForbiddenError, UnauthorizedError
from app.core.logging import bind_user_id
from app.core.security import load_session_cookie, verify_antiforgery_token
from app.models.user import User

SESSION_COOKIE_NAME = "betdesk_session"
ANTIFORGERY_COOKIE_NAME = "betdesk_antiforgery"
ANTIFORGERY_HEADER_NAME = "RequestVerificationToken"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    user = await User.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    bind_user_id(str(user.id))
    return user


async def require_admin(request: Request) -> User:
    """Dependency: require current user to have role admin."""
    user = await get_current_user(request)
    if not user.is_admin:
        raise ForbiddenError("Admin only")
    return user


def require_antiforgery(request: Request, user: User) -> None:
    """Reject state-changing requests whose antiforgery header does not match the cookie."""
    ok = verify_antiforgery_token(
        request.cookies.get(ANTIFORGERY_COOKIE_NAME),
        request.headers.get(ANTIFORGERY_HEADER_NAME),
        str(user.id),
    )
    if not ok:
        raise AntiforgeryError()
