import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from config import ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, DEFAULT_CATEGORIES, SECRET_KEY
from database import get_db, Category, User, Workspace
from schemas import RegisterOut, Token, UserCreate, UserLogin, UserOut

logger = logging.getLogger(__name__)

auth_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as resolved from the bearer token."""

    user_id: str
    email: str
    workspace_id: Optional[str] = None
    role: Optional[str] = None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise credentials_exception
    return user


async def get_principal(user: User = Depends(get_current_user)) -> Principal:
    return Principal(
        user_id=user.id,
        email=user.email,
        workspace_id=user.workspace_id,
        role=user.role,
    )


def create_account(db: Session, name: str, email: str, password: str) -> User:
    """Create a user together with their own workspace and its default categories.

    The caller commits; nothing is flushed to other sessions before that.
    """
    user = User(name=name, email=email, password=hash_password(password), role="OWNER")
    db.add(user)
    db.flush()

    workspace = Workspace(name=f"{name}'s Workspace", owner_id=user.id)
    db.add(workspace)
    db.flush()

    for category_name, color in DEFAULT_CATEGORIES:
        db.add(Category(name=category_name, color=color, workspace_id=workspace.id))
    user.workspace_id = workspace.id
    return user


@auth_router.post("/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
async def register(user: UserCreate, db: Session = Depends(get_db)):
    db_user = db.query(User).filter(User.email == user.email).first()
    if db_user:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User with this email already exists",
        )

    new_user = create_account(db, user.name, user.email, user.password)
    db.commit()
    db.refresh(new_user)
    logger.info("Registered user %s with workspace %s", new_user.id, new_user.workspace_id)

    access_token = create_access_token(data={"sub": new_user.id})
    return RegisterOut(access_token=access_token, user=UserOut.model_validate(new_user))


@auth_router.post("/login", response_model=Token)
async def login(user: UserLogin, db: Session = Depends(get_db)):
    db_user = db.query(User).filter(User.email == user.email).first()
    if not db_user or not verify_password(user.password, db_user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access_token = create_access_token(data={"sub": db_user.id})
    return Token(access_token=access_token)
