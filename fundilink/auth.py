import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer()

CLIENT = "client"
PROVIDER = "provider"
ADMIN = "admin"
# Internal role for transitions driven by the payment gateway
SYSTEM = "system"

USER_ROLES = {CLIENT, PROVIDER, ADMIN}


@dataclass(frozen=True)
class Actor:
    """Caller identity as established by the identity service"""

    user_id: Optional[str]
    role: str


SYSTEM_ACTOR = Actor(user_id=None, role=SYSTEM)


def create_access_token(user_id: str, role: str) -> str:
    """Issue a token in the identity service's format (used by tooling and tests)"""
    return jose_jwt.encode({"sub": user_id, "role": role}, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Actor:
    try:
        claims = jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"🚫 Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from None

    user_id = claims.get("sub")
    role = claims.get("role")
    if not user_id or role not in USER_ROLES:
        logger.warning(f"🚫 Token missing subject or carrying unknown role: {role}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    return Actor(user_id=str(user_id), role=role)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """Resolve the bearer token into an Actor"""
    return decode_access_token(credentials.credentials)
