"""
Passwords and browser sessions.

A session is a signed JWT holding the cart id and, once logged in, the user.
It travels in an HTTP-only cookie, or in an ``Authorization: Bearer`` header
for API clients. Nothing is kept server side, so every instance can read it.
Logged in tokens also carry the user's ``session_revision``; logout bumps the
revision, which revokes every token issued before it.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import (
    COOKIE_SECURE,
    SESSION_ALGORITHM,
    SESSION_COOKIE,
    SESSION_MAX_AGE_MINUTES,
    SESSION_SECRET,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # unrecognised hash format
        return False


class Session(BaseModel):
    cart_id: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    is_admin: bool = False
    # must match the user's session_revision, logout bumps it
    revision: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


def new_session() -> Session:
    return Session(cart_id=uuid.uuid4().hex)


def create_access_token(session: Session, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=SESSION_MAX_AGE_MINUTES))
    to_encode = {"cid": session.cart_id, "adm": session.is_admin, "exp": expire}
    # jose rejects a non-string "sub" on decode, so anonymous sessions omit it
    if session.user_id:
        to_encode.update({"sub": session.user_id, "usr": session.username, "rev": session.revision})
    return jwt.encode(to_encode, SESSION_SECRET, algorithm=SESSION_ALGORITHM)


def decode_token(token: str) -> Optional[Session]:
    try:
        payload = jwt.decode(token, SESSION_SECRET, algorithms=[SESSION_ALGORITHM])
    except JWTError:
        return None
    cart_id = payload.get("cid")
    if not cart_id:
        return None
    return Session(
        cart_id=cart_id,
        user_id=payload.get("sub"),
        username=payload.get("usr"),
        is_admin=bool(payload.get("adm")),
        revision=int(payload.get("rev") or 0),
    )


def save_session(response: Response, session: Session) -> str:
    token = create_access_token(session)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=SESSION_MAX_AGE_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
    )
    return token


def clear_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, httponly=True, samesite="lax", secure=COOKIE_SECURE)


# Dependency: every request gets a session, new browsers get a fresh cart id
def get_session(request: Request, response: Response, authorization: Optional[str] = Header(default=None)) -> Session:
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1]
    else:
        token = request.cookies.get(SESSION_COOKIE)
    session = decode_token(token) if token else None
    if session is None:
        if authorization and authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        session = new_session()
        save_session(response, session)
    return session
