"""
services/auth/router.py
Admin console sign-in: email + password -> JWT access token.
App users and businesses receive their tokens from the external auth provider;
this router only serves the console.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenDenyList, get_redis
from config.settings import settings
from shared.middleware.auth import TokenData, get_token_data, require_admin
from shared.models.models import AccountRole, Admin, utcnow
from shared.schemas.schemas import AdminLoginRequest, MessageResponse, TokenResponse
from shared.utils.security import create_access_token, get_token_remaining_ttl, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/auth", tags=["Admin: Auth"])


@router.post("/login", response_model=TokenResponse, summary="Admin login")
async def login(
    data: AdminLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange admin credentials for a bearer token."""
    result = await db.execute(select(Admin).where(func.lower(Admin.email) == data.email.lower()))
    admin = result.scalar_one_or_none()

    if not admin or not verify_password(data.password, admin.password_hash):
        logger.warning(f"Failed admin login for {data.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not admin.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    admin.last_sign_in_at = utcnow()
    await db.commit()

    access_token, _ = create_access_token(
        account_id=admin.id,
        role=AccountRole.ADMIN.value,
        email=admin.email,
    )
    logger.info(f"Admin {admin.id} signed in")
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=MessageResponse, summary="Admin logout")
async def logout(
    token_data: TokenData = Depends(get_token_data),
    current_admin: Admin = Depends(require_admin),
    redis=Depends(get_redis),
):
    """Deny-list the presented token until it expires."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if token_data.jti and ttl > 0:
        await TokenDenyList(redis).revoke(token_data.jti, ttl)
    return MessageResponse(message="Logged out successfully")
