"""
API authentication for FocusLock.

Every request resolves to an owner id; all data access is scoped by it.

Two modes:
1. Token mode: FOCUSLOCK_API_TOKENS="token1:user1,token2:user2" maps bearer
   tokens to owner ids.
2. Development mode (FOCUSLOCK_API_TOKENS unset): the X-User-Id header is
   trusted as the owner id. A warning is logged once.

Token extraction order:
1. Authorization: Bearer <token> header
2. X-API-Token header
3. api_token query parameter (EventSource cannot set headers)

Usage:
    from focuslock_api.auth import require_user

    @router.get("/api/tasks")
    def list_tasks(owner_id: str = Depends(require_user)):
        ...
"""

import logging
import os
import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)

_dev_mode_warned = False


def load_token_map(raw: str | None = None) -> dict[str, str]:
    """Parse "token:user,..." into {token: user}. Malformed entries are skipped."""
    raw = os.environ.get("FOCUSLOCK_API_TOKENS", "") if raw is None else raw
    mapping: dict[str, str] = {}
    for entry in raw.split(","):
        token, sep, user = entry.strip().partition(":")
        if not sep or not token or not user:
            if entry.strip():
                logger.warning("Ignoring malformed FOCUSLOCK_API_TOKENS entry")
            continue
        mapping[token.strip()] = user.strip()
    return mapping


def _get_token_from_request(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]

    x_token = request.headers.get("X-API-Token")
    if x_token:
        return x_token

    return request.query_params.get("api_token") or None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def require_user(
    request: Request, credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> str:
    """
    Dependency resolving the caller's owner id.

    Raises HTTPException 401 when no identity can be established.
    """
    global _dev_mode_warned

    tokens = load_token_map()
    if tokens:
        provided = _get_token_from_request(request)
        if not provided:
            logger.warning("Auth failed: no token provided for %s", request.url.path)
            raise _unauthorized("Authentication required. Provide Bearer token.")

        for token, owner_id in tokens.items():
            # Constant-time comparison against every configured token
            if secrets.compare_digest(provided.encode(), token.encode()):
                request.state.owner_id = owner_id
                return owner_id

        logger.warning("Auth failed: invalid token for %s", request.url.path)
        raise _unauthorized("Invalid authentication token.")

    if not _dev_mode_warned:
        logger.warning("FOCUSLOCK_API_TOKENS not set: trusting X-User-Id (development mode)")
        _dev_mode_warned = True

    owner_id = request.headers.get("X-User-Id") or request.query_params.get("user_id") or ""
    owner_id = owner_id.strip()
    if not owner_id:
        raise _unauthorized("Authentication required. Provide X-User-Id in development mode.")
    request.state.owner_id = owner_id
    return owner_id
