"""Password hashing, credential checks and account creation."""
import logging
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import AuthenticationError, InvalidInputError
from .models import User
from .policy import Operation, Resource, ensure
from .schemas import UserCreate
from .tokens import Principal, TokenPair, TokenService

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    user: Optional[User] = db.scalars(select(User).where(User.email == email)).first()
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def login(db: Session, tokens: TokenService, email: str, password: str) -> tuple[User, TokenPair]:
    user = authenticate_user(db, email, password)
    if user is None:
        logger.warning("failed login for %s", email)
        raise AuthenticationError("Invalid credentials")
    return user, tokens.issue_pair(user.id, user.role)


def create_user(db: Session, user_in: UserCreate) -> User:
    if db.scalars(select(User).where(User.email == user_in.email)).first() is not None:
        raise InvalidInputError("Email already registered")
    user = User(
        name=user_in.name,
        email=user_in.email,
        role=user_in.role,
        hashed_password=get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def register_user(db: Session, principal: Principal, user_in: UserCreate) -> User:
    ensure(principal, Operation.CREATE, Resource.USER, message="Only admins can create accounts")
    user = create_user(db, user_in)
    logger.info("user %s (%s) created by %s", user.id, user.role.value, principal.user_id)
    return user


def get_own_user(db: Session, principal: Principal) -> User:
    ensure(principal, Operation.READ, Resource.USER, principal.user_id)
    user = db.get(User, principal.user_id)
    if user is None:
        raise AuthenticationError("User no longer exists")
    return user
