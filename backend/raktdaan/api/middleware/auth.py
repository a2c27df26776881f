from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.config import get_settings
from raktdaan.db.postgres import get_db
from raktdaan.models.user import User, UserRole
from raktdaan.services.ranking_service import get_alert_or_404

settings = get_settings()
security = HTTPBearer()


class TokenData(BaseModel):
    user_id: str
    role: UserRole
    hospital_id: Optional[str] = None
    donor_id: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.JWT_EXPIRATION_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def token_for_user(user: User) -> str:
    """Access token carrying the hospital or donor the user acts for."""
    claims = {"sub": str(user.id), "role": user.role.value}
    if user.hospital_id:
        claims["hospital_id"] = str(user.hospital_id)
    if user.donor_id:
        claims["donor_id"] = str(user.donor_id)
    return create_access_token(claims)


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return TokenData(
            user_id=payload["sub"],
            role=payload["role"],
            hospital_id=payload.get("hospital_id"),
            donor_id=payload.get("donor_id"),
        )
    except (JWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    token_data = decode_token(credentials.credentials)
    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Malformed subject")
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


def require_role(*roles: UserRole):
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        # Super admin bypasses all role checks
        if current_user.role == UserRole.SUPER_ADMIN:
            return current_user
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {current_user.role} not authorized. Required: {[r.value for r in roles]}",
            )
        return current_user
    return role_checker


# ---------------------------------------------------------------------------
# Ownership checks (run before any lifecycle operation)
# ---------------------------------------------------------------------------

async def ensure_alert_owner(db: AsyncSession, alert_id: UUID, user: User) -> None:
    """Hospital admins may only act on their own hospital's alerts."""
    if user.role == UserRole.SUPER_ADMIN:
        return
    alert = await get_alert_or_404(db, alert_id)
    if user.hospital_id is None or alert.hospital_id != user.hospital_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your hospital's alert")


def ensure_donor_self(user: User, donor_id: UUID) -> None:
    """Donors may only act for themselves."""
    if user.role == UserRole.SUPER_ADMIN:
        return
    if user.donor_id is None or user.donor_id != donor_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot act for another donor")
