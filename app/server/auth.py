import logging
from traceback import format_exc
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError

from app.models.users import User
from config import AUTH_JWT_KEY

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# JWT configuration
ALGORITHM = "HS256"

# Tokens are issued by the identity provider; this service only decodes them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def decode_user(token: str) -> Optional[User]:
    """
    Decode a bearer token into a User.

    Args:
        token: Encoded JWT

    Returns:
        User built from the token claims, or None if the token has no subject

    Raises:
        InvalidTokenError: If the token is malformed, expired or badly signed
    """
    payload = jwt.decode(token, AUTH_JWT_KEY, algorithms=[ALGORITHM])
    uid = payload.get("sub")
    if uid is None:
        return None

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if payload.get("role"):
        roles = [*roles, payload["role"]]

    return User(
        uid=uid,
        email=payload.get("email"),
        full_name=payload.get("name"),
        roles=roles,
        disabled=bool(payload.get("disabled", False)),
    )


async def _get_current_user(token: Annotated[str, Depends(oauth2_scheme)]) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        user = decode_user(token)
    except InvalidTokenError:
        logger.error(f"Invalid token error\n{format_exc()}")
        raise credentials_exception
    if user is None:
        logger.error("No subject found in token")
        raise credentials_exception
    return user


async def get_current_user(
    current_user: Annotated[User, Depends(_get_current_user)],
) -> User:
    if current_user.disabled:
        logger.error(f"Inactive user attempted access: {current_user.uid}")
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user
