"""
Bearer-token gate for the sync endpoints.

Verifying who the caller is belongs to the identity provider; this module
only defines the narrow seam (a verifier with verify(token) -> caller id) and
the FastAPI dependency that every trigger route must depend on.
"""
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from scriptsync.config import ConfigurationError

logger = logging.getLogger(__name__)


class StaticTokenVerifier:
    """Accepts exactly one shared token (SYNC_API_TOKEN)."""

    def __init__(self, token: str):
        self._token = token

    def verify(self, token: str) -> Optional[str]:
        """
        Returns:
            A stable caller id for rate limiting, or None if the token is wrong.

        Raises:
            ConfigurationError: if no token is configured.
        """
        if not self._token:
            raise ConfigurationError("SYNC_API_TOKEN is not set")
        if not hmac.compare_digest(token.encode(), self._token.encode()):
            return None
        return "token:" + hashlib.sha256(token.encode()).hexdigest()[:12]


def get_token_verifier(request: Request):
    return request.app.state.token_verifier


def require_caller(
    authorization: Optional[str] = Header(None),
    verifier=Depends(get_token_verifier),
) -> str:
    """FastAPI dependency: reject the request unless it carries a valid bearer token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")
    try:
        caller = verifier.verify(authorization[len("Bearer "):])
    except ConfigurationError as exc:
        logger.error("Cannot verify sync caller: %s", exc)
        raise HTTPException(status_code=500, detail="Server configuration error")
    if caller is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return caller
