from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from . import config
from .db import async_session
from .models import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# prefer a pure-Python, widely-available scheme for tests and portability;
# keep bcrypt as a fallback if available.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)
basic_scheme = HTTPBasic(auto_error=False)


class TokenData(BaseModel):
    username: Optional[str] = None


async def get_user_by_username(username: str) -> Optional[User]:
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.username == username))
        return q.first()


async def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


async def authenticate_user(username: str, password: str) -> Optional[User]:
    user = await get_user_by_username(username)
    if not user:
        return None
    if not await verify_password(password, user.password_hash):
        return None
    return user


def _matches_env_credentials(username: str, password: str) -> bool:
    if not (config.BASIC_AUTH_USER and config.BASIC_AUTH_PASSWORD):
        return False
    user_ok = secrets.compare_digest(username.encode('utf-8'), config.BASIC_AUTH_USER.encode('utf-8'))
    pass_ok = secrets.compare_digest(password.encode('utf-8'), config.BASIC_AUTH_PASSWORD.encode('utf-8'))
    return user_ok and pass_ok


async def _get_or_create_env_user(username: str) -> User:
    user = await get_user_by_username(username)
    if user:
        return user
    async with async_session() as sess:
        user = User(username=username, password_hash=None)
        sess.add(user)
        try:
            await sess.commit()
            await sess.refresh(user)
            logger.info('created user row for env basic-auth user %s', username)
            return user
        except IntegrityError:
            # another request created it first
            await sess.rollback()
    return await get_user_by_username(username)


async def authenticate_basic(credentials: HTTPBasicCredentials) -> Optional[User]:
    if _matches_env_credentials(credentials.username, credentials.password):
        return await _get_or_create_env_user(credentials.username)
    return await authenticate_user(credentials.username, credentials.password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    # RFC 7519 recommends NumericDate (seconds since epoch). Encode as int.
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    basic: Optional[HTTPBasicCredentials] = Depends(basic_scheme),
) -> Optional[User]:
    """Resolve the caller from a bearer token or HTTP Basic credentials.

    Returns None when no credentials were supplied. Credentials that were
    supplied but do not check out raise 401 rather than falling through to
    anonymous access.
    """
    if basic is not None:
        user = await authenticate_basic(basic)
        if user is None:
            logger.info('basic auth rejected for user=%s', basic.username)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect username or password",
                headers={"WWW-Authenticate": 'Basic realm="Secure Area"'},
            )
        return user
    if not token:
        return None
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except JWTError:
        raise credentials_exception
    user = await get_user_by_username(token_data.username)
    if user is None:
        raise credentials_exception
    return user


async def require_login(user: Optional[User] = Depends(get_current_user)) -> User:
    """Dependency that enforces an authenticated user.

    Returns the User when present, otherwise raises 401 Unauthorized with a
    Basic challenge so browsers prompt for credentials.
    """
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="authentication required",
            headers={"WWW-Authenticate": 'Basic realm="Secure Area"'},
        )
    return user
