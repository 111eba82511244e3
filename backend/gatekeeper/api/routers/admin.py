# backend/gatekeeper/api/routers/admin.py
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.users import get_current_active_admin_user
from gatekeeper.db.models.user import User
from gatekeeper.db.session import get_async_session
from gatekeeper.schemas.auth import MessageResponse
from gatekeeper.services import auth_service

logger = logging.getLogger(__name__)


admin_router = APIRouter(
    prefix="/admin",
    tags=["Admin - User Management"],
    dependencies=[Depends(get_current_active_admin_user)],  # Protects all routes in this router
)


async def get_target_user_or_404(
    user_id: uuid.UUID, session: AsyncSession = Depends(get_async_session)
) -> User:
    """Dependency to fetch a user by ID or raise 404 Not Found."""
    user = await session.get(User, user_id)
    if not user:
        logger.warning("Admin action attempted on non-existent user_id: %s", user_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="USER_NOT_FOUND")
    return user


@admin_router.post(
    "/users/{user_id}/reset-2fa",
    response_model=MessageResponse,
    summary="Reset a user's second factor (Admin only)",
    description="Removes TOTP, backup codes and security keys, and revokes trusted devices.",
)
async def reset_second_factor(
    target_user: User = Depends(get_target_user_or_404),
    admin: User = Depends(get_current_active_admin_user),
    session: AsyncSession = Depends(get_async_session),
):
    await auth_service.reset_second_factor(session, target_user)
    logger.warning("Admin %s reset the second factor of user %s.", admin.id, target_user.id)
    return MessageResponse(message="Second factor reset.")
