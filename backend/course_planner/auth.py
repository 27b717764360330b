from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Query
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from course_planner.config import settings
from course_planner.db import get_db
from course_planner.models import User


serializer = URLSafeTimedSerializer(settings.session_secret, salt="course-planner-session")
PBKDF2_ITERATIONS = 240_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, expected = password_hash.partition("$")
    if not expected:
        return False
    return hmac.compare_digest(hash_password(password, salt), password_hash)


def issue_session_token(user: User) -> str:
    return serializer.dumps({"user_id": user.id})


@dataclass
class SessionContext:
    """Who is calling, resolved once per request from the signed session token."""

    user: Optional[User] = None
    session_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None


def resolve_session(db: Session, session_token: Optional[str]) -> SessionContext:
    if not session_token:
        return SessionContext()
    try:
        payload = serializer.loads(session_token, max_age=settings.session_max_age_seconds)
    except BadSignature:
        return SessionContext(session_token=session_token)
    return SessionContext(user=db.get(User, payload.get("user_id")), session_token=session_token)


def session_context(session_token: Optional[str] = Query(None), db: Session = Depends(get_db)) -> SessionContext:
    return resolve_session(db, session_token)


def current_user(session_token: str = Query(...), db: Session = Depends(get_db)) -> User:
    try:
        payload = serializer.loads(session_token, max_age=settings.session_max_age_seconds)
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    user = db.get(User, payload["user_id"])
    if not user:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user
