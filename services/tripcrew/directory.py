"""
Identity directory adapter.

Users, credentials and tokens belong to the identity service. This service
only needs two facts from it: which user owns a phone number, and how to
display a user. Both are reads against the mirrored ``users`` table.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.tripcrew.db.models import User
from services.tripcrew.errors import NotFound


def display_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    return f"{first_name or ''} {last_name or ''}".strip()


class IdentityDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_user_by_phone(self, phone: str) -> int:
        stmt = select(User).where(User.phone == phone.strip())
        result = await self.session.execute(stmt)
        user = result.scalars().first()
        if user is None:
            raise NotFound("User not found.")
        return user.id

    async def get_user(self, user_id: int) -> User:
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        user = result.scalars().first()
        if user is None:
            raise NotFound("User not found.")
        return user

    async def get_display(self, user_id: int) -> dict:
        user = await self.get_user(user_id)
        return {
            "id": user.id,
            "firstName": user.firstName,
            "lastName": user.lastName,
            "displayName": display_name(user.firstName, user.lastName),
            "avatarUrl": user.avatarUrl,
        }
