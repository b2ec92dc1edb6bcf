"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Tokens carry a role claim; the role decides which account table `sub` refers to.
"""

from typing import Optional, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenDenyList, get_redis
from shared.models.models import AccountRole, Admin, Business, User
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)

Account = Union[Admin, Business, User]

ACCOUNT_MODELS = {
    AccountRole.ADMIN: Admin,
    AccountRole.BUSINESS: Business,
    AccountRole.USER: User,
}


class TokenData:
    def __init__(self, payload: dict):
        self.account_id: int = int(payload["sub"])
        self.role: AccountRole = AccountRole(payload["role"])
        self.email: str = payload.get("email", "")
        self.jti: str = payload.get("jti", "")
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_access_token(credentials.credentials)
        token_data = TokenData(payload)
    except (JWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if token_data.jti and await TokenDenyList(redis).is_revoked(token_data.jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return token_data


async def get_current_account(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """Load the account the token was issued for. Discarded accounts are invisible."""
    model = ACCOUNT_MODELS[token_data.role]
    result = await db.execute(select(model).where(model.id == token_data.account_id))
    account = result.scalar_one_or_none()

    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
        )
    if isinstance(account, Admin) and not account.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    if isinstance(account, User) and not account.active_for_authentication:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return account


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: AccountRole):
        self.roles = roles

    async def __call__(
        self,
        token_data: TokenData = Depends(get_token_data),
        db: AsyncSession = Depends(get_db),
    ) -> Account:
        # Role first, so a wrong-role token is a 403 even if its account is gone
        if token_data.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return await get_current_account(token_data, db)


# Convenience role dependencies
require_admin = RoleRequired(AccountRole.ADMIN)
require_user = RoleRequired(AccountRole.USER)
