"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- Data-stream frame parsing
"""

import json
import time
from uuid import uuid4

import jwt

# Must match the verifier configured in conftest.app
TEST_SECRET = "test-session-secret"
TEST_ISSUER = "test-issuer"
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = TEST_ISSUER,
    secret: str = TEST_SECRET,
    **extra_claims,
) -> str:
    """Mint a valid HS256 session token.

    Args:
        user_id: The user ID to set as the `sub` claim.
        expires_in: Token validity in seconds from now.
        issuer: The `iss` claim value.
        secret: Signing secret.
        **extra_claims: Additional claims to include in the token.
    """
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def mint_expired_token(user_id: str) -> str:
    """Mint a token that expired 1 hour ago (beyond the clock skew allowance)."""
    return mint_test_token(user_id, expires_in=-3600)


def auth_headers(user_id: str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_user_id() -> str:
    """Generate a random opaque user id."""
    return f"user_{uuid4().hex[:12]}"


def parse_data_stream(body: str) -> list[tuple[str, object]]:
    """Split a data-stream body into (code, decoded value) pairs."""
    frames = []
    for line in body.splitlines():
        if not line:
            continue
        code, _, payload = line.partition(":")
        frames.append((code, json.loads(payload)))
    return frames
