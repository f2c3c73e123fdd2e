"""
Email/password registration and login, logout, current user, password change.

- Register and login issue an opaque session token, return it in the body
  and also set it in an HttpOnly cookie for browser flows.
- Every protected endpoint accepts the token either as
  "Authorization: Bearer <token>" or via the cookie; both go through
  session_store.validate. A present but malformed Authorization header is
  rejected rather than falling back to the cookie.
- Any authentication failure is a 401 with the same generic message, so
  clients cannot tell an unknown token from an expired one.
"""
from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from config import SECURE_COOKIES, SESSION_COOKIE_NAME, SESSION_MAX_AGE
from database import get_db
from errors import Unauthenticated
from models import User
from security import MAX_PASSWORD_BYTES
from services import accounts, session_store

router = APIRouter(prefix="/auth")


# Cookie flags: HttpOnly (no JS access), SameSite=Lax (CSRF mitigation), Secure in production
def _cookie_kwargs(secure: bool = False) -> dict:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "path": "/",
    }


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=SESSION_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )


def _check_password_length(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# --- Request models ---


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name cannot be blank")
        return value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_length(value)


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ChangePasswordBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., min_length=1, alias="currentPassword")
    new_password: str = Field(..., min_length=8, alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def new_password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_length(value)


# --- Dependencies ---


def get_session_token(request: Request) -> str | None:
    """Token from the Authorization header if present, else from the session cookie."""
    header = request.headers.get("Authorization")
    if header is not None:
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            raise Unauthenticated()
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE_NAME)


def get_current_user(
    token: str | None = Depends(get_session_token),
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency: validate the session token and load the active User.
    Raises Unauthenticated (401) on any failure.
    """
    user_id = session_store.validate(db, token)
    return accounts.get_active_user(db, user_id)


# --- Endpoints ---


@router.post("/register", status_code=201)
def register(body: RegisterBody, response: Response, db: Session = Depends(get_db)):
    """Create an account and sign it in. 409 if the email is already registered."""
    user = accounts.register(db, body.name, body.email, body.password)
    token = session_store.issue(db, user.id)
    _set_session_cookie(response, token)
    return {"user": user.to_dict(), "token": token}


@router.post("/login")
def login(body: LoginBody, response: Response, db: Session = Depends(get_db)):
    user = accounts.authenticate(db, body.email, body.password)
    token = session_store.issue(db, user.id)
    _set_session_cookie(response, token)
    return {"user": user.to_dict(), "token": token}


@router.post("/logout")
def logout(
    response: Response,
    user: User = Depends(get_current_user),
    token: str | None = Depends(get_session_token),
    db: Session = Depends(get_db),
):
    """Revoke the presented session and clear the cookie."""
    session_store.revoke(db, token)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"ok": True}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    """Return the current user profile."""
    return {"user": user.to_dict()}


@router.post("/password")
def change_password(
    body: ChangePasswordBody,
    user: User = Depends(get_current_user),
    token: str | None = Depends(get_session_token),
    db: Session = Depends(get_db),
):
    """
    Rotate the password. The session used for this call stays valid; every
    other session of the user is revoked.
    """
    accounts.change_password(db, user, body.current_password, body.new_password)
    session_store.revoke_all(db, user.id, except_token=token)
    return {"ok": True}
