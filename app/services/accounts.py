"""
Account service: registration, credential checks and password rotation.

Users are never deleted; is_active=False is the only way to disable one.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import commit_with_retry
from errors import EmailTaken, InvalidCredentials, Unauthenticated
from models import User
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so both paths cost one bcrypt check
_DUMMY_HASH = hash_password("not-a-real-password")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def register(db: Session, name: str, email: str, password: str) -> User:
    """Create a user. Raises EmailTaken if the (normalized) email exists."""
    email = normalize_email(email)
    if db.query(User).filter(User.email == email).first():
        raise EmailTaken()

    password_hash = hash_password(password)

    def insert() -> User:
        user = User(name=name.strip(), email=email, password_hash=password_hash)
        db.add(user)
        return user

    try:
        user = commit_with_retry(db, insert, "user register")
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        raise EmailTaken()
    logger.info("User registered: %s", user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    """Return the active user matching email/password or raise Unauthenticated."""
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        verify_password(password, _DUMMY_HASH)
        raise InvalidCredentials()
    if not verify_password(password, user.password_hash) or not user.is_active:
        raise InvalidCredentials()
    return user


def get_active_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise Unauthenticated()
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    """Rotate the credential hash after checking the current password."""
    if not verify_password(current_password, user.password_hash):
        raise InvalidCredentials("Current password is incorrect")
    new_hash = hash_password(new_password)

    def apply() -> None:
        user.password_hash = new_hash

    commit_with_retry(db, apply, "password change")
    logger.info("Password changed for user %s", user.id)
