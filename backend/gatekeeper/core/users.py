import logging
import uuid

from fastapi import Depends, HTTPException, status
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin
from fastapi_users.authentication import (
    AuthenticationBackend,
    BearerTransport,
    JWTStrategy,
)
from fastapi_users_db_sqlalchemy import SQLAlchemyUserDatabase

from gatekeeper.core.config import settings
from gatekeeper.core.security import password_helper
from gatekeeper.db.models.user import User, UserRole
from gatekeeper.db.session import get_user_db

logger = logging.getLogger(__name__)


# User Manager
# Only used to resolve the current user from a bearer token; registration,
# verification and password reset go through the auth service.
class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = settings.SECRET_KEY
    verification_token_secret = settings.SECRET_KEY


async def get_user_manager(user_db: SQLAlchemyUserDatabase = Depends(get_user_db)):
    """Dependency to get the UserManager instance."""
    yield UserManager(user_db, password_helper)


# --- JWT Strategy ---
def get_access_token_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(
        secret=settings.SECRET_KEY,
        lifetime_seconds=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        algorithm=settings.ALGORITHM,
    )


bearer_transport = BearerTransport(tokenUrl=f"{settings.API_V1_STR}/auth/login")

bearer_auth_backend = AuthenticationBackend(
    name="jwt-bearer-access",
    transport=bearer_transport,
    get_strategy=get_access_token_jwt_strategy,
)

fastapi_users_instance = FastAPIUsers[User, uuid.UUID](get_user_manager, [bearer_auth_backend])

current_active_user = fastapi_users_instance.current_user(active=True)


# --- Role-Based Dependencies ---
def has_role(user: User, role: UserRole) -> bool:
    match UserRole(user.role):
        case UserRole.ADMIN:
            return True
        case UserRole.STANDARD:
            return role == UserRole.STANDARD
        case _:
            return False


async def get_current_active_admin_user(user: User = Depends(current_active_user)) -> User:
    if not has_role(user, UserRole.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The user does not have admin privileges.",
        )
    return user
