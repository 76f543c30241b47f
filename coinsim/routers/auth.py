from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import authenticate, bearer_scheme, create_user, get_current_user_id, issue_token, revoke_token
from ..database import get_db
from ..models import User

router = APIRouter(prefix="/auth", tags=["auth"])


class Credentials(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=128)


@router.post("/signup")
def signup(body: Credentials, db: Session = Depends(get_db)):
    if db.query(User).filter(User.username == body.username).first():
        raise HTTPException(status_code=400, detail="Username already taken")

    user = create_user(db, body.username, body.password)
    return {"token": issue_token(db, user), "user_id": user.id, "username": user.username}


@router.post("/login")
def login(body: Credentials, db: Session = Depends(get_db)):
    user = authenticate(db, body.username, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"token": issue_token(db, user), "user_id": user.id, "username": user.username}


@router.post("/logout")
def logout(
    user_id: int = Depends(get_current_user_id),
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
):
    revoke_token(db, credentials.credentials)
    return {"message": "Logged out"}
