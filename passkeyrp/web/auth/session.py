"""Signed bearer-token sessions."""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import secrets
import time

import structlog
from fastapi import HTTPException, Request
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

logger = structlog.get_logger(__name__)


class SessionIssuer:
    """Mints and resolves opaque session tokens bound to a user id.

    Token layout: ``base64url(json{sub, iat, nonce}) "." hmac_sha256_hex``.
    The payload is readable but any change to it invalidates the MAC, so a
    holder cannot mint a token for another user without ``secret_key``.
    Stateless: any instance sharing the secret can resolve a token.
    """

    def __init__(self, secret_key: str, max_age: int = 86400) -> None:
        self._secret = secret_key.encode()
        self._max_age = max_age

    def issue(self, user_id: str) -> str:
        """Create a new session token for ``user_id``."""
        payload = {"sub": user_id, "iat": int(time.time()), "nonce": secrets.token_urlsafe(16)}
        body = bytes_to_base64url(json.dumps(payload, separators=(",", ":")).encode())
        logger.info("session_issued", user_id=user_id)
        return f"{body}.{self._sign(body)}"

    def resolve(self, token: str) -> str | None:
        """Return the user id of a valid, unexpired token, else None."""
        if not token or token.count(".") != 1:
            return None

        body, signature = token.split(".", 1)
        if not hmac.compare_digest(signature.encode(), self._sign(body).encode()):
            return None

        try:
            payload = json.loads(base64url_to_bytes(body))
        except (binascii.Error, ValueError):
            return None
        if not isinstance(payload, dict):
            return None

        subject, issued_at = payload.get("sub"), payload.get("iat")
        if not isinstance(subject, str) or not isinstance(issued_at, int):
            return None
        if time.time() - issued_at > self._max_age:
            return None
        return subject

    def _sign(self, data: str) -> str:
        """Create HMAC signature for a token body."""
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()


def bearer_token(request: Request) -> str:
    """Extract the bearer token from the Authorization header or raise 401."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="No token provided")
    return token.strip()


def require_user(request: Request) -> str:
    """FastAPI dependency: resolve the bearer token to a user id."""
    issuer: SessionIssuer = request.app.state.session_issuer
    user_id = issuer.resolve(bearer_token(request))
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


def optional_user(request: Request) -> str | None:
    """FastAPI dependency: the session's user id if a valid token is present."""
    if "authorization" not in request.headers:
        return None
    issuer: SessionIssuer = request.app.state.session_issuer
    return issuer.resolve(bearer_token(request))
