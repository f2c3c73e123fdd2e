"""
Session store: issues, validates and revokes opaque bearer tokens.

A session row maps sha256(token) to a user id with issue and expiry times.
Validation is a single primary-key read and writes nothing unless sliding
expiry is enabled. Revocation is idempotent.
"""
import logging
from datetime import datetime, timedelta, UTC

from sqlalchemy.orm import Session

from config import SESSION_MAX_AGE, SESSION_SLIDING_EXPIRY
from database import commit_with_retry
from errors import Unauthenticated
from models import AuthSession, as_utc
from security import generate_token, hash_token, is_well_formed_token

logger = logging.getLogger(__name__)


def issue(db: Session, user_id: str) -> str:
    """
    Create a session for user_id and return the raw token. The token is
    returned exactly once; only its digest is persisted. Expired sessions
    are purged first.
    """
    purge_expired(db)

    token = generate_token()
    token_hash = hash_token(token)

    def insert() -> None:
        now = datetime.now(UTC)
        db.add(
            AuthSession(
                token_hash=token_hash,
                user_id=user_id,
                issued_at=now,
                expires_at=now + timedelta(seconds=SESSION_MAX_AGE),
            )
        )

    commit_with_retry(db, insert, "session issue")
    logger.info("Session issued for user %s: %s", user_id, token_hash[:8])
    return token


def validate(db: Session, token: str | None) -> str:
    """
    Return the user id bound to token.

    Raises Unauthenticated if the token is missing, malformed, unknown or
    expired. The message is the same in every case so callers cannot tell
    which one applied.
    """
    if not is_well_formed_token(token):
        raise Unauthenticated()

    record = db.get(AuthSession, hash_token(token))
    if record is None:
        raise Unauthenticated()

    now = datetime.now(UTC)
    if as_utc(record.expires_at) <= now:
        raise Unauthenticated()

    if SESSION_SLIDING_EXPIRY:
        def extend() -> None:
            record.expires_at = now + timedelta(seconds=SESSION_MAX_AGE)

        commit_with_retry(db, extend, "session refresh")

    return record.user_id


def revoke(db: Session, token: str | None) -> None:
    """Remove the session for token if present; no error if already gone."""
    if not is_well_formed_token(token):
        return
    token_hash = hash_token(token)
    query = db.query(AuthSession).filter(AuthSession.token_hash == token_hash)
    deleted = commit_with_retry(db, query.delete, "session revoke")
    if deleted:
        logger.info("Session revoked: %s", token_hash[:8])


def revoke_all(db: Session, user_id: str, except_token: str | None = None) -> int:
    """Revoke every session of user_id, optionally keeping the one for except_token."""
    query = db.query(AuthSession).filter(AuthSession.user_id == user_id)
    if except_token and is_well_formed_token(except_token):
        query = query.filter(AuthSession.token_hash != hash_token(except_token))
    deleted = commit_with_retry(
        db, lambda: query.delete(synchronize_session=False), "session revoke_all"
    )
    if deleted:
        logger.info("Revoked %d sessions for user %s", deleted, user_id)
    return deleted


def purge_expired(db: Session) -> int:
    """Delete sessions past their expiry. Returns the number removed."""
    def purge() -> int:
        return (
            db.query(AuthSession)
            .filter(AuthSession.expires_at <= datetime.now(UTC))
            .delete(synchronize_session=False)
        )

    deleted = commit_with_retry(db, purge, "session purge")
    if deleted:
        logger.info("Purged %d expired sessions", deleted)
    return deleted
