"""
Transaction persistence.

Two implementations share the TransactionStore contract:
- MongoTransactionStore for deployments (Motor)
- InMemoryTransactionStore for local development and tests

Status updates go through compare_and_set_status, which is atomic per order
id. That is the only synchronisation the lifecycle service relies on; writes
for different order ids never contend.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from paygate.errors import DuplicateOrderError, InternalError
from paygate.models import TransactionDB
from paygate.status import TransactionStatus

logger = logging.getLogger(__name__)


class TransactionStore(ABC):
    """Storage contract for transaction records."""

    @abstractmethod
    async def save(self, transaction: TransactionDB) -> TransactionDB:
        """Insert a new transaction. Raises DuplicateOrderError if the order id exists."""
        ...

    @abstractmethod
    async def find_by_order_id(self, order_id: str) -> Optional[TransactionDB]:
        ...

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> List[TransactionDB]:
        """All transactions owned by `user_id`, newest first."""
        ...

    @abstractmethod
    async def compare_and_set_status(
        self,
        order_id: str,
        expected: TransactionStatus,
        new: TransactionStatus,
        updated_at: datetime,
    ) -> Optional[TransactionDB]:
        """
        Move `order_id` from `expected` to `new`.

        Returns the updated record, or None when the stored status is no
        longer `expected` (or the order does not exist).
        """
        ...

    async def ping(self) -> bool:
        return True


def _history_order(transactions: List[TransactionDB]) -> List[TransactionDB]:
    return sorted(transactions, key=lambda t: (t.created_at, t.order_id), reverse=True)


def _to_transaction(doc: dict) -> TransactionDB:
    try:
        return TransactionDB.model_validate(doc)
    except PydanticValidationError as e:
        logger.error("Stored transaction failed validation", extra={"order_id": doc.get("_id")})
        raise InternalError("Stored transaction is corrupted", {"order_id": doc.get("_id")}) from e


class InMemoryTransactionStore(TransactionStore):
    def __init__(self) -> None:
        self._transactions: Dict[str, TransactionDB] = {}
        # One lock per stored order; unknown ids never get one
        self._locks: Dict[str, asyncio.Lock] = {}

    async def save(self, transaction: TransactionDB) -> TransactionDB:
        if transaction.order_id in self._transactions:
            raise DuplicateOrderError(
                f"Order {transaction.order_id} already exists",
                {"order_id": transaction.order_id},
            )
        self._locks[transaction.order_id] = asyncio.Lock()
        self._transactions[transaction.order_id] = transaction.model_copy(deep=True)
        return transaction

    async def find_by_order_id(self, order_id: str) -> Optional[TransactionDB]:
        transaction = self._transactions.get(order_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def find_by_user_id(self, user_id: str) -> List[TransactionDB]:
        owned = [t.model_copy(deep=True) for t in self._transactions.values() if t.user_id == user_id]
        return _history_order(owned)

    async def compare_and_set_status(self, order_id, expected, new, updated_at):
        lock = self._locks.get(order_id)
        if lock is None:
            return None
        async with lock:
            current = self._transactions[order_id]
            if current.status != expected:
                return None
            updated = current.model_copy(update={"status": new, "updated_at": updated_at})
            self._transactions[order_id] = updated
            return updated.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._transactions)


class MongoTransactionStore(TransactionStore):
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self.collection = db.transactions

    async def create_indexes(self) -> None:
        await self.collection.create_index("user_id")
        await self.collection.create_index([("user_id", 1), ("created_at", -1)])

    async def save(self, transaction: TransactionDB) -> TransactionDB:
        doc = transaction.model_dump(by_alias=True, mode="python")
        doc["status"] = transaction.status.value
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateOrderError(
                f"Order {transaction.order_id} already exists",
                {"order_id": transaction.order_id},
            ) from e
        except PyMongoError as e:
            raise InternalError("Failed to store transaction", {"order_id": transaction.order_id}) from e
        return transaction

    async def find_by_order_id(self, order_id: str) -> Optional[TransactionDB]:
        try:
            doc = await self.collection.find_one({"_id": order_id})
        except PyMongoError as e:
            raise InternalError("Failed to load transaction", {"order_id": order_id}) from e
        return _to_transaction(doc) if doc else None

    async def find_by_user_id(self, user_id: str) -> List[TransactionDB]:
        try:
            cursor = self.collection.find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)])
            return [_to_transaction(doc) async for doc in cursor]
        except PyMongoError as e:
            raise InternalError("Failed to load transaction history") from e

    async def compare_and_set_status(self, order_id, expected, new, updated_at):
        try:
            doc = await self.collection.find_one_and_update(
                {"_id": order_id, "status": expected.value},
                {"$set": {"status": new.value, "updated_at": updated_at}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise InternalError("Failed to update transaction status", {"order_id": order_id}) from e
        return _to_transaction(doc) if doc else None

    async def ping(self) -> bool:
        try:
            await self.db.command("ping")
            return True
        except PyMongoError:
            return False
