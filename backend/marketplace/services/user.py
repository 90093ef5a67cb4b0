from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db import store
from marketplace.models.user import User


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    return await store.find_one(db, User, User.id == user_id)


async def get_users_by_ids(db: AsyncSession, user_ids: list[int]) -> list[User]:
    if not user_ids:
        return []
    return await store.find(db, User, User.id.in_(user_ids))
