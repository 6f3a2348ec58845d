"""Password hashing and signed session tokens.

Tokens are ``<base64url(json payload)>.<base64url(hmac-sha256)>``; the payload
carries ``sub``, ``email``, ``role``, ``iat`` and ``exp``.
"""
import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional, Union

from passlib.context import CryptContext

from storefront.config import get_settings
from storefront.core.exceptions import UnauthorizedError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unknown/corrupt hash format
        return False


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(message: bytes, secret: str) -> str:
    return _b64encode(hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest())


def create_session_token(
    user_id: int,
    email: str,
    role: str,
    expires_in_minutes: Optional[int] = None,
) -> str:
    settings = get_settings()
    if expires_in_minutes is None:
        expires_in_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + expires_in_minutes * 60,
    }
    body = _b64encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{_sign(body.encode('ascii'), settings.SECRET_KEY)}"


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify a session token and return its payload.

    Raises UnauthorizedError for malformed, tampered or expired tokens.
    """
    settings = get_settings()
    try:
        body, signature = token.split(".", 1)
        message = body.encode("ascii")
    except (ValueError, UnicodeEncodeError):
        raise UnauthorizedError("Invalid session token")

    expected = _sign(message, settings.SECRET_KEY)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        raise UnauthorizedError("Invalid session token")

    try:
        payload = json.loads(_b64decode(body))
    except (ValueError, UnicodeDecodeError):
        raise UnauthorizedError("Invalid session token")

    if not isinstance(payload, dict) or not payload.get("sub"):
        raise UnauthorizedError("Invalid session token")
    if int(payload.get("exp", 0)) < int(time.time()):
        raise UnauthorizedError("Session expired")
    return payload


def hmac_sha256_hex(secret: str, message: Union[str, bytes]) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: Optional[str]) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
