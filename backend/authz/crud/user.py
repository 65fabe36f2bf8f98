import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def get_role(self, user_id: uuid.UUID) -> str | None:
        result = await self.session.execute(select(User.role).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def update_role(self, user_id: uuid.UUID, role: str) -> bool:
        result = await self.session.execute(
            update(User).where(User.id == user_id).values(role=role)
        )
        return result.rowcount > 0
