# backend/gatekeeper/schemas/user.py
import uuid
from datetime import datetime

from fastapi_users import schemas

from gatekeeper.db.models.user import UserRole


class UserRead(schemas.BaseUser[uuid.UUID]):
    # Inherits id, email, is_active, is_superuser, is_verified
    role: UserRole
    created_at: datetime
    updated_at: datetime
