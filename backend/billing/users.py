"""
User directory collaborator. The core only needs to know whether a user
exists and whether they are an admin (admins bypass billing entirely).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from infrastructure.config import StorageConfig
from infrastructure.supabase_rest import SupabaseREST

logger = logging.getLogger("UserDirectory")


@dataclass(frozen=True)
class User:
    id: str
    is_admin: bool = False
    email: Optional[str] = None


class UserDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...


class InMemoryUserDirectory(UserDirectory):
    """
    Dict-backed directory. With `allow_unknown` every id resolves to a
    regular user, which is how local development runs without a users table.
    """

    def __init__(self, users: Dict[str, User] = None, allow_unknown: bool = False):
        self._users = dict(users or {})
        self.allow_unknown = allow_unknown

    def register(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        if user is None and self.allow_unknown:
            return User(id=user_id)
        return user


class SupabaseUserDirectory(UserDirectory):
    def __init__(self, client: SupabaseREST, table: str = "users"):
        self.client = client
        self.table = table

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await (
            self.client.table(self.table)
            .select("id,is_admin,email")
            .eq("id", user_id)
            .single()
            .execute()
        )
        row = result.data
        if not row:
            return None
        return User(id=str(row["id"]), is_admin=bool(row.get("is_admin")), email=row.get("email"))


def build_user_directory(storage: StorageConfig) -> UserDirectory:
    if storage.backend == "supabase":
        return SupabaseUserDirectory(SupabaseREST(storage.supabase_url, storage.supabase_key), storage.users_table)
    logger.info("[UserDirectory] In-memory directory accepting any user id")
    return InMemoryUserDirectory(allow_unknown=True)
