from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from guidance_portal.core.config import settings
from guidance_portal.core.errors import PermissionDenied
from guidance_portal.schemas.user import Account
from guidance_portal.services.user_service import get_user_by_id
import logging

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

def create_access_token(
    data: Dict[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
        
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )
    
    return encoded_jwt

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Account:
    """Resolve the acting user from a bearer token whose `sub` is the account uid."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    
    if credentials is None:
        raise credentials_exception
    
    try:
        payload = jwt.decode(
            credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        subject: str = payload.get("sub")
        if subject is None:
            raise credentials_exception
    except JWTError as jwt_error:
        logger.warning(f"JWT decode error: {jwt_error}")
        raise credentials_exception
    
    account = await get_user_by_id(subject)
    if account is None:
        logger.warning(f"User not found for ID: {subject}")
        raise credentials_exception
    
    return account

async def get_current_counselor(current_user: Account = Depends(get_current_user)) -> Account:
    ensure_counselor(current_user, "access guidance features")
    return current_user

def ensure_counselor(user: Account, action: str) -> None:
    if not user.is_counselor:
        raise PermissionDenied(f"Only guidance counselors can {action}")

def ensure_student(user: Account, action: str) -> None:
    if not user.studentId:
        raise PermissionDenied(f"Only students can {action}")

def ensure_owner(user: Account, appointment: Dict[str, Any], action: str) -> None:
    if not user.studentId or appointment.get("studentId") != user.studentId:
        raise PermissionDenied(f"You can only {action} your own appointments")
