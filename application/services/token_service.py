"""
Token service - issues and verifies JWT access tokens
"""
from typing import Optional
from datetime import datetime, timedelta, timezone
import jwt
import uuid

from domain.user.entity import User
from core.config import settings
from core.exceptions import TokenExpiredException
from core.logging_config import get_logger


logger = get_logger(__name__)


class TokenService:
    """
    Access tokens only

    Tokens are minted by the identity provider in production; create_access_token
    exists for operators and tests.
    """

    def create_access_token(self, user: User, expires_minutes: Optional[int] = None) -> str:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
        to_encode = {
            "sub": str(user.id),
            "email": user.email,
            "is_superuser": user.is_superuser,
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    def verify_access_token(self, token: str) -> Optional[int]:
        """Verify an access JWT and return the user id.

        - Expired token: raise TokenExpiredException
        - Invalid token or wrong type: return None
        """
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError as e:
            logger.warning("invalid_access_token", error=str(e))
            return None

        if payload.get("type") != "access":
            return None

        user_id = payload.get("sub")
        if user_id is None or not str(user_id).isdigit():
            return None
        return int(user_id)
