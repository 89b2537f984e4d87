# Overview: Bearer token validation for API requests, plus token issuance for operators and tests.

"""
Session Token Service

WHY: Every ledger call is attributed to a user. Requests carry a bearer
token; the database keeps only its SHA-256 hash.

Interactive login and token refresh live in the identity service that
fronts this API. Here tokens are only validated, and issued by the
`flask users issue-token` command.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from .errors import NotFoundError, ValidationError
from wholesale.time_utils import utcnow

DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)


def generate_token() -> str:
    """64-character hex token (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user_id: int, lifetime: timedelta = DEFAULT_TOKEN_LIFETIME) -> tuple[SessionToken, str]:
    """
    Create a session for an active user.

    Returns (session_record, plaintext_token). Only the hash is stored.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if not user.is_active:
        raise ValidationError("User account is deactivated")

    plaintext = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext),
        created_at=now,
        expires_at=now + lifetime,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext


def validate_token(token: str) -> User | None:
    """
    Resolve a bearer token to its user.

    Returns None if the token is unknown, revoked or expired, or if the
    user has been deactivated.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    if session.expires_at < utcnow():
        return None

    user = session.user
    if not user or not user.is_active:
        return None
    return user


def revoke_token(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    db.session.commit()
    return True
