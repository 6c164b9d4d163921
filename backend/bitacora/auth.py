"""
Bearer-token authentication for Flask.

Tokens are RS256 JWTs verified against the identity provider's JSON Web Key
Set (AUTH_JWKS_URL). The token's `sub` claim is the user id every query is
scoped by.
"""

import logging
from functools import wraps
from typing import Any

import requests
from flask import current_app, g, jsonify, request
from jose import jwt
from jose.exceptions import JWTError

from .config import Config

logger = logging.getLogger(__name__)

# Cache for JWKS
_jwks_cache: dict[str, Any] | None = None


def get_jwks() -> dict[str, Any]:
    """
    Fetch the JSON Web Key Set used to verify tokens.

    Raises:
        RuntimeError: If AUTH_JWKS_URL is not configured
        requests.RequestException: If the key set cannot be fetched
    """
    global _jwks_cache

    if _jwks_cache is not None:
        return _jwks_cache

    if not Config.AUTH_JWKS_URL:
        raise RuntimeError("AUTH_JWKS_URL is not configured")

    response = requests.get(Config.AUTH_JWKS_URL, timeout=10)
    response.raise_for_status()
    _jwks_cache = response.json()
    return _jwks_cache


def clear_jwks_cache() -> None:
    global _jwks_cache
    _jwks_cache = None


def verify_token(token: str) -> dict[str, Any] | None:
    """
    Verify a bearer JWT.

    Returns:
        Decoded token payload if valid, None otherwise
    """
    try:
        jwks = get_jwks()
    except (RuntimeError, requests.RequestException) as e:
        logger.error("Error fetching JWKS: %s", e)
        return None

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        logger.info("Malformed token header: %s", e)
        return None

    kid = unverified_header.get("kid")
    if not kid:
        return None

    key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
    if not key:
        logger.warning("Key %s not found in JWKS", kid)
        return None

    options = {"verify_aud": False, "verify_iss": bool(Config.AUTH_ISSUER)}
    try:
        return jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            options=options,
            issuer=Config.AUTH_ISSUER,
        )
    except JWTError as e:
        logger.info("JWT verification failed: %s", e)
        return None


def get_auth_token() -> str | None:
    """
    Extract bearer token from Authorization header.

    Returns:
        Token string if present, None otherwise
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    return auth_header[7:]  # Remove 'Bearer ' prefix


def require_auth(f):
    """
    Decorator to require authentication for a Flask route.

    Sets g.user (token payload) and g.user_id (its `sub`).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # TESTING seam: allow deterministic auth without external JWKS/network.
        # This is only enabled when Flask TESTING is true.
        if current_app.config.get("TESTING") is True:
            test_user_id = request.headers.get("X-Test-User-Id")
            if test_user_id:
                g.user = {"sub": test_user_id}
                g.user_id = test_user_id
                return f(*args, **kwargs)

        token = get_auth_token()
        if not token:
            return jsonify({"error": "Missing authentication token"}), 401

        payload = verify_token(token)
        if not payload or not payload.get("sub"):
            return jsonify({"error": "Invalid authentication token"}), 401

        g.user = payload
        g.user_id = payload["sub"]

        return f(*args, **kwargs)

    return decorated_function
