"""
Minimal session auth. Routes only ever see the user id returned by
`get_current_user_id`.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import AuthSession, Portfolio, User, utcnow

logger = logging.getLogger("Auth")

PBKDF2_ITERATIONS = 200_000

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, expected = password_hash.partition("$")
    return hmac.compare_digest(hash_password(password, salt).partition("$")[2], expected)


def create_user(db: Session, username: str, password: str) -> User:
    """Create a user together with their portfolio and starting balance."""
    user = User(username=username, password_hash=hash_password(password))
    user.portfolio = Portfolio(usd_balance=settings.STARTING_BALANCE)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.id} ({username}) with balance {settings.STARTING_BALANCE}")
    return user


def authenticate(db: Session, username: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.username == username).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def issue_token(db: Session, user: User) -> str:
    token = secrets.token_urlsafe(32)
    db.add(AuthSession(
        token=token,
        user_id=user.id,
        expires_at=utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    ))
    db.commit()
    return token


def revoke_token(db: Session, token: str):
    db.query(AuthSession).filter(AuthSession.token == token).delete()
    db.commit()


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> int:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    session = db.query(AuthSession).filter(AuthSession.token == credentials.credentials).first()
    if not session or session.expires_at < utcnow():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return session.user_id
