"""
User repository.

Users are provisioned by the authentication gateway; this service only needs
to create them (tests, seeding) and resolve the caller of a request.
"""

from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from chatline.models.user import User
from chatline.exceptions.mapper import db_error_handler
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):

    def __init__(self, db: AsyncSession):
        super().__init__(User, db)

    async def create_user(self, username: str, email: str) -> User:
        """
        Create a user. Username and email are stored lower-cased.

        Raises:
            DuplicateError: If the username or email is already taken.
        """
        return await self.create(
            username=username.strip().lower(),
            email=email.strip().lower(),
        )

    async def get_active_user(self, user_id: UUID) -> User | None:
        """The user with `user_id` if it exists and is active, else None."""
        async with db_error_handler(self.db, "User"):
            result = await self.db.execute(
                select(User).where(User.id == user_id, User.is_active.is_(True))
            )
            return result.scalar_one_or_none()

    async def deactivate_user(self, user_id: UUID) -> User | None:
        logger.info("user.deactivated", extra={"user_id": str(user_id)})
        return await self.update(user_id, is_active=False)
