import hashlib
import hmac
import secrets
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

SESSION_MAX_AGE = 7 * 24 * 3600
ANTIFORGERY_MAX_AGE = 12 * 3600


def _serializer(salt: str) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt=salt,
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def get_session_serializer() -> URLSafeTimedSerializer:
    return _serializer("betdesk-session")


def create_session_cookie(payload: dict[str, Any]) -> str:
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    try:
        return get_session_serializer().loads(cookie_value, max_age=SESSION_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None


# Antiforgery: double-submit token. The cookie holds a signed nonce bound to the
# user; the RequestVerificationToken header must carry the same signed value.
def create_antiforgery_token(user_id: str) -> str:
    return _serializer("betdesk-antiforgery").dumps({"uid": user_id, "n": secrets.token_urlsafe(16)})


def verify_antiforgery_token(cookie_token: str | None, header_token: str | None, user_id: str) -> bool:
    if not cookie_token or not header_token:
        return False
    if not hmac.compare_digest(cookie_token, header_token):
        return False
    try:
        data = _serializer("betdesk-antiforgery").loads(cookie_token, max_age=ANTIFORGERY_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return False
    return data.get("uid") == user_id


def bypass_code_matches(configured: str, supplied: str | None) -> bool:
    """Empty configured code means no code is required."""
    if not configured:
        return True
    return hmac.compare_digest(configured, supplied or "")
