"""
Authentication and authorization helpers: password hashing, JWT issuing
and verification, and the FastAPI dependencies guarding the endpoints.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from models.config_models import AppConfig, get_config
from models.main_models import CompanyRecord, UserRecord

logger = logging.getLogger(__name__)

# Password hashing settings
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class TokenUser(BaseModel):
    """
    Identity decoded from a bearer token.
    """
    user_id: Optional[str] = None
    username: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(user: UserRecord, config: AppConfig,
                        expires_delta: Optional[timedelta] = None) -> str:
    """
    Creates a signed JWT carrying the user's id, username and role.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=config.access_token_expire_minutes)
    )
    to_encode = {
        "sub": user.username,
        "userId": user.id,
        "username": user.username,
        "role": user.role,
        "exp": expire,
    }
    return jwt.encode(to_encode, config.secret_key, algorithm=config.algorithm)


def decode_token(token: str, config: AppConfig) -> Dict[str, Any]:
    """
    Verifies signature and expiry and returns the payload.

    Raises:
        JWTError: If the token is malformed, forged or expired.
    """
    return jwt.decode(token, config.secret_key, algorithms=[config.algorithm])


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Returns the token part of an `Authorization: Bearer <token>` header.
    """
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) < 2:
        return None
    return parts[1]


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def identify(authorization: Optional[str], config: AppConfig) -> TokenUser:
    """
    Gets the caller's identity from an Authorization header value.

    Raises:
        HTTPException: 401 when the token is missing, forged or expired.
    """
    token = extract_bearer_token(authorization)
    if not token:
        logger.info("Rejected request without bearer token")
        raise _unauthorized("No token provided")
    try:
        payload = decode_token(token, config)
    except JWTError as exc:
        logger.info("Token verification failed: %s", exc)
        raise _unauthorized("Invalid token") from exc

    username = payload.get("username") or payload.get("sub")
    role = payload.get("role")
    if not username or not role:
        raise _unauthorized("Invalid token")
    return TokenUser(user_id=payload.get("userId"), username=username, role=role)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    config: AppConfig = Depends(get_config),
) -> TokenUser:
    return identify(authorization, config)


def forbid_non_admin(user: TokenUser) -> None:
    if not user.is_admin:
        logger.info("Admin access denied for %s", user.username)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )


async def require_admin(current_user: TokenUser = Depends(get_current_user)) -> TokenUser:
    """
    Lets only admin tokens through.
    """
    forbid_non_admin(current_user)
    return current_user


def can_access_company(company: CompanyRecord, user: TokenUser) -> bool:
    return user.is_admin or company.created_by == user.username


def ensure_company_access(company: CompanyRecord, user: TokenUser) -> None:
    """
    Raises 403 unless the caller created the company or is an admin.
    """
    if not can_access_company(company, user):
        logger.info(
            "Access denied: %s attempted to access company %s created by %s",
            user.username, company.id, company.created_by
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Access denied",
                "details": "You can only access companies that you have created",
            },
        )
