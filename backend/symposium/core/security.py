from dataclasses import dataclass
from typing import Optional
import logging

import jwt
from fastapi.security import OAuth2PasswordBearer

from .config import settings

logger = logging.getLogger(__name__)

# Tokens come from the external auth service; this URL is only advertised in the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

ADMIN_ROLES = frozenset({"super_admin", "event_admin"})


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def decode_token(token: str) -> Optional[Principal]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.PyJWTError as e:
        logger.info(f"Rejected bearer token: {e}")
        return None

    user_id = payload.get("sub") or payload.get("user_id")
    role = payload.get("role")
    if not user_id or not role:
        return None
    return Principal(user_id=str(user_id), role=str(role))


def create_access_token(user_id: str, role: str) -> str:
    """Mint a token the way the auth service does. Used by tooling and tests."""
    return jwt.encode({"sub": user_id, "role": role}, settings.secret_key, algorithm=settings.algorithm)
