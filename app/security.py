"""
Credential primitives: password hashing and opaque session tokens.

Passwords are hashed with bcrypt (cost from BCRYPT_ROUNDS). Session tokens
are 256-bit values from the OS CSPRNG, URL-safe base64 encoded; the session
table stores only their SHA-256 digest.
"""
import hashlib
import re
import secrets

import bcrypt

from config import BCRYPT_ROUNDS

TOKEN_BYTES = 32

# token_urlsafe(32) always yields 43 characters from this alphabet
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check password against a stored bcrypt hash; False on any malformed input."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def is_well_formed_token(token: str | None) -> bool:
    return bool(token) and _TOKEN_RE.match(token) is not None


def hash_token(token: str) -> str:
    """Digest used as the session primary key."""
    return hashlib.sha256(token.encode("ascii")).hexdigest()
