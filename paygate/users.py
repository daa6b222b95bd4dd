"""
User directory and token revocation storage.

The payment lifecycle only needs `get_user`; registration and login use the
rest of the directory.
"""
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from paygate.models import UserDB, UserProfile


class EmailAlreadyRegistered(Exception):
    pass


def to_profile(user: UserDB) -> UserProfile:
    return UserProfile(**user.model_dump(exclude={"password_hash"}))


class UserDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[UserDB]:
        ...

    @abstractmethod
    async def create_user(self, user: UserDB) -> UserProfile:
        """Persist a new user. Raises EmailAlreadyRegistered on a duplicate email."""
        ...


class RevokedTokenStore(ABC):
    @abstractmethod
    async def revoke(self, jti: str, expires_at: datetime) -> None:
        ...

    @abstractmethod
    async def is_revoked(self, jti: str) -> bool:
        ...


# --- In-memory ---

class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Iterable[UserDB] = ()) -> None:
        self._users: Dict[str, UserDB] = {user.id: user for user in users}

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        user = self._users.get(user_id)
        return to_profile(user) if user else None

    async def find_by_email(self, email: str) -> Optional[UserDB]:
        email = email.lower()
        for user in self._users.values():
            if user.email.lower() == email:
                return user
        return None

    async def create_user(self, user: UserDB) -> UserProfile:
        if await self.find_by_email(user.email):
            raise EmailAlreadyRegistered(user.email)
        user_id = user.id or uuid.uuid4().hex
        stored = user.model_copy(update={"id": user_id})
        self._users[user_id] = stored
        return to_profile(stored)


class InMemoryRevokedTokenStore(RevokedTokenStore):
    def __init__(self) -> None:
        self._revoked: Dict[str, datetime] = {}

    def _prune(self, now: datetime) -> None:
        # An expired token fails verification on its own, so its entry can go
        for jti in [jti for jti, expires_at in self._revoked.items() if expires_at <= now]:
            del self._revoked[jti]

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        now = datetime.utcnow()
        self._prune(now)
        if expires_at > now:
            self._revoked[jti] = expires_at

    async def is_revoked(self, jti: str) -> bool:
        self._prune(datetime.utcnow())
        return jti in self._revoked

    def __len__(self) -> int:
        return len(self._revoked)


# --- MongoDB ---

def str_to_oid(id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        return None


class MongoUserDirectory(UserDirectory):
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.collection = db.users

    async def create_indexes(self) -> None:
        await self.collection.create_index("email", unique=True)

    @staticmethod
    def _from_doc(doc: dict) -> UserDB:
        doc["_id"] = str(doc["_id"])
        return UserDB.model_validate(doc)

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        oid = str_to_oid(user_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return to_profile(self._from_doc(doc)) if doc else None

    async def find_by_email(self, email: str) -> Optional[UserDB]:
        doc = await self.collection.find_one({"email": email.lower()})
        return self._from_doc(doc) if doc else None

    async def create_user(self, user: UserDB) -> UserProfile:
        doc = user.model_dump(by_alias=True, exclude={"id"})
        doc["email"] = doc["email"].lower()
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise EmailAlreadyRegistered(user.email) from e
        doc["_id"] = result.inserted_id
        return to_profile(self._from_doc(doc))


class MongoRevokedTokenStore(RevokedTokenStore):
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.collection = db.revoked_tokens

    async def create_indexes(self) -> None:
        # TTL index drops entries once the token would have expired anyway
        await self.collection.create_index("exp", expireAfterSeconds=0)
        await self.collection.create_index("jti", unique=True)

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        await self.collection.update_one(
            {"jti": jti},
            {"$setOnInsert": {"jti": jti, "exp": expires_at}},
            upsert=True,
        )

    async def is_revoked(self, jti: str) -> bool:
        return await self.collection.find_one({"jti": jti}) is not None
