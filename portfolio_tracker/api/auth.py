"""
認證依賴

Token 由外部身分服務簽發（HS256，sub = 用戶 id），此處只負責驗證
並取得對應的用戶。
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.config import get_settings
from portfolio_tracker.database import get_db
from portfolio_tracker.models.user import User

logger = logging.getLogger(__name__)

settings = get_settings()
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str) -> str:
    """產生 JWT Token（與身分服務相同的格式）"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "exp": now + timedelta(minutes=settings.jwt_expire_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def _verify_token(token: str) -> str | None:
    """驗證 JWT Token，回傳 user_id"""
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.jwt_algorithm]
        )
        return payload.get("sub")
    except jwt.PyJWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """取得當前已認證的用戶"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="未提供認證 Token",
        )

    user_id = _verify_token(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token 無效或已過期",
        )

    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用戶不存在或已停用",
        )

    return user


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """僅允許管理員（ADMIN_EMAILS）"""
    if user.email not in settings.admin_email_list:
        logger.warning("非管理員 %s 嘗試執行維護作業", user.email)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="需要管理員權限",
        )
    return user
