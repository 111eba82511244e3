# backend/tests/factories/user_factory.py

import uuid
from typing import Any

import factory
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.security import password_helper  # Use the same password helper as the app
from gatekeeper.db.models.user import User, UserRole

DEFAULT_PASSWORD = "correct horse battery staple"


class UserFactory(factory.Factory):
    """
    Factory for creating User model instances for testing.

    Note: This factory requires an explicit session to be passed to its
          create_* methods (`create_user`, `create_admin`) and relies on
          the calling test to handle flushing/committing the session.
    """

    class Meta:
        model = User
        # 'password' is the raw password, the model only knows hashed_password
        exclude = ("password",)

    id: uuid.UUID = factory.LazyFunction(uuid.uuid4)
    email: str = factory.Sequence(lambda n: f"testuser{n}@example.com")
    password: str = DEFAULT_PASSWORD
    hashed_password: str = factory.LazyAttribute(lambda o: password_helper.hash(o.password))
    is_active: bool = True
    is_superuser: bool = False
    # Most flows need a confirmed address; registration tests build unverified users explicitly
    is_verified: bool = True
    role: UserRole = UserRole.STANDARD
    trusted_epoch: int = 0
    totp_secret: str | None = None

    @classmethod
    def _create(
        cls: type["UserFactory"], model_class: type[User], *args: Any, **kwargs: Any
    ) -> User:
        raise NotImplementedError("Use create_user or create_admin methods with a session.")

    @classmethod
    def create_user(cls: type["UserFactory"], session: AsyncSession, **kwargs: Any) -> User:
        """
        Builds a User instance, adds it to the provided session.
        Does NOT commit or flush the session.

        Args:
            session: The SQLAlchemy AsyncSession to add the user to.
            **kwargs: Override attributes for the user (e.g., email, password, is_verified).
                      If 'password' is provided, it will be hashed.

        Returns:
            The newly created (but not flushed/committed) User instance.
        """
        user = cls.build(**kwargs)
        session.add(user)
        return user

    @classmethod
    def create_admin(cls: type["UserFactory"], session: AsyncSession, **kwargs: Any) -> User:
        """
        Builds an admin User instance, adds it to the provided session.
        Does NOT commit or flush the session.
        """
        kwargs.setdefault("is_superuser", True)
        kwargs.setdefault("role", UserRole.ADMIN)
        user = cls.build(**kwargs)
        session.add(user)
        return user
