from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from songbattle.core.clock import utcnow
from songbattle.core.security import api_key_prefix, generate_api_key, hash_api_key, verify_api_key
from songbattle.db.session import SessionLocal
from songbattle.models.user import User
from songbattle.schemas.user import UserRegisterRequest, UserRegisterResponse, UserResponse


router = APIRouter()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    db: Session = Depends(get_db),
) -> User:
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    prefix = api_key_prefix(x_api_key)
    if prefix is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    # Prefixes are not unique by constraint; check every candidate's hash.
    for user in db.query(User).filter(User.api_key_prefix == prefix).all():
        if verify_api_key(x_api_key, user.api_key_hash):
            return user

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


@router.post("/register", response_model=UserRegisterResponse)
def register_user(payload: UserRegisterRequest, db: Session = Depends(get_db)) -> UserRegisterResponse:
    username = payload.username.strip()
    if db.query(User.id).filter(User.username == username).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")

    api_key = generate_api_key()
    user = User(
        username=username,
        api_key_prefix=api_key_prefix(api_key),
        api_key_hash=hash_api_key(api_key),
        created_at=utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    return UserRegisterResponse(
        user_id=user.id,
        username=user.username,
        api_key=api_key,
        created_at=user.created_at,
    )


@router.get("/me", response_model=UserResponse)
def read_me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse(user_id=user.id, username=user.username, created_at=user.created_at)
