from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from src.pawie import config, db


_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
_bearer = HTTPBearer(auto_error=False)


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Hash a plaintext password."""
    return _pwd_context.hash(password)


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a plaintext password against a stored hash. Profiles without a hash never match."""
    if not password_hash:
        return False
    return _pwd_context.verify(password, password_hash)


def _create_access_token(payload: Dict[str, Any], expires_delta: timedelta) -> str:
    to_encode = payload.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.jwt_secret(), algorithm=config.JWT_ALGORITHM)


# PUBLIC_INTERFACE
def create_user_access_token(user_id: UUID, role: str, email: str) -> str:
    """Create a JWT access token for a profile."""
    return _create_access_token(
        {"sub": str(user_id), "role": role, "email": email},
        expires_delta=timedelta(minutes=config.JWT_EXPIRES_MINUTES),
    )


# PUBLIC_INTERFACE
def decode_user_id(token: str) -> UUID:
    """Profile id from a valid token; raises 401 otherwise."""
    try:
        payload = jwt.decode(token, config.jwt_secret(), algorithms=[config.JWT_ALGORITHM])
        sub = payload.get("sub")
        if not sub:
            raise _unauthorized("Invalid token payload")
        return UUID(str(sub))
    except (JWTError, ValueError):
        raise _unauthorized("Invalid token")


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


# PUBLIC_INTERFACE
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer)) -> Dict[str, Any]:
    """Dependency that returns the current authenticated profile row."""
    if credentials is None:
        raise _unauthorized()

    user_id = decode_user_id(credentials.credentials)
    user = db.fetch_one(
        "SELECT id, email, full_name, phone, role, created_at, updated_at FROM profiles WHERE id=%s",
        [user_id],
    )
    if not user:
        raise _unauthorized("User not found")
    return user


# PUBLIC_INTERFACE
def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Dependency that ensures the current profile has the admin role."""
    if user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
