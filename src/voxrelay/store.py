from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from typing import Any

import msgspec
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from .errors import StoreError
from .logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "ConversationMessage",
    "HistoryStore",
    "MESSAGES_FIELD",
    "Role",
    "UserRecord",
]

MESSAGES_FIELD = "messages"


class Role(enum.StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationMessage(msgspec.Struct, frozen=True):
    role: Role
    content: str

    def to_document(self) -> dict[str, str]:
        return {"role": str(self.role), "content": self.content}


class UserRecord(msgspec.Struct, forbid_unknown_fields=False):
    id: int | str
    messages: list[ConversationMessage] = msgspec.field(default_factory=list)
    first_name: str | None = None
    username: str | None = None
    type: str | None = None


def _to_record(doc: Mapping[str, Any] | None, user_id: int | str) -> UserRecord:
    if doc is None:
        raise StoreError(f"user {user_id} not found")
    fields = {key: value for key, value in doc.items() if key != "_id"}
    try:
        return msgspec.convert(fields, type=UserRecord)
    except msgspec.ValidationError as exc:
        logger.error("store.bad_document", user_id=user_id, error=str(exc))
        raise StoreError(f"malformed record for user {user_id}: {exc}") from exc


class HistoryStore:
    """Per-user conversation log kept in one MongoDB collection.

    Every mutation is a single ``find_one_and_update`` so concurrent turns for
    the same user never overwrite each other.
    """

    def __init__(
        self,
        uri: str,
        *,
        database: str = "Telegram",
        collection: str = "Users",
        client_factory: Callable[[str], Any] = AsyncMongoClient,
    ) -> None:
        self._uri = uri
        self._database = database
        self._collection_name = collection
        self._client_factory = client_factory
        self._client: Any = None
        self._collection: Any = None

    @property
    def is_open(self) -> bool:
        return self._collection is not None

    async def open(self) -> None:
        if self._client is not None:
            return
        client = self._client_factory(self._uri)
        try:
            await client.admin.command("ping")
        except PyMongoError as exc:
            logger.error("store.connect_failed", database=self._database, error=str(exc))
            await client.close()
            raise StoreError(f"cannot connect to MongoDB: {exc}") from exc
        self._client = client
        self._collection = client[self._database][self._collection_name]
        logger.info(
            "store.connected",
            database=self._database,
            collection=self._collection_name,
        )

    async def close(self) -> None:
        if self._client is None:
            return
        client = self._client
        self._client = None
        self._collection = None
        await client.close()
        logger.info("store.closed")

    async def __aenter__(self) -> HistoryStore:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise StoreError("history store is not open")
        return self._collection

    async def _update(
        self,
        op: str,
        user_id: int | str,
        update: dict[str, Any],
    ) -> UserRecord:
        collection = self._require_collection()
        try:
            doc = await collection.find_one_and_update(
                {"id": user_id},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            logger.error(f"store.{op}.failed", user_id=user_id, error=str(exc))
            raise StoreError(f"{op} failed for user {user_id}: {exc}") from exc
        return _to_record(doc, user_id)

    async def get_or_create_user(
        self,
        user_id: int | str,
        profile: Mapping[str, Any] | None = None,
    ) -> UserRecord:
        on_insert: dict[str, Any] = {
            key: value
            for key, value in (profile or {}).items()
            if key not in {"_id", "id", MESSAGES_FIELD} and value is not None
        }
        on_insert[MESSAGES_FIELD] = []
        return await self._update(
            "get_or_create", user_id, {"$setOnInsert": on_insert}
        )

    async def append_to_array_field(
        self,
        user_id: int | str,
        field_name: str,
        item: ConversationMessage | Mapping[str, Any],
    ) -> UserRecord:
        if isinstance(item, ConversationMessage):
            value: Any = item.to_document()
        else:
            value = dict(item)
        return await self._update("append", user_id, {"$push": {field_name: value}})

    async def clear_array_field(self, user_id: int | str, field_name: str) -> UserRecord:
        return await self._update("clear", user_id, {"$set": {field_name: []}})
