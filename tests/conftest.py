"""In-memory stand-ins for motor clients shared by the test modules."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self.docs = list(docs)
        self.sort_spec: list[tuple[str, int]] | None = None
        self.skip_count = 0
        self.limit_count: int | None = None

    def sort(self, spec):  # type: ignore[no-untyped-def]
        self.sort_spec = spec
        return self

    def skip(self, count: int) -> FakeCursor:
        self.skip_count = count
        return self

    def limit(self, count: int) -> FakeCursor:
        self.limit_count = count
        return self

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        docs = self.docs[self.skip_count :]
        if self.limit_count:
            docs = docs[: self.limit_count]
        return docs


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.indexes: list[dict[str, Any]] = [{"v": 2, "key": {"_id": 1}, "name": "_id_"}]
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.cursors: list[FakeCursor] = []
        self.dropped = False

    def _record(self, method: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((method, args, kwargs))

    def find(self, query=None, projection=None):  # type: ignore[no-untyped-def]
        self._record("find", query, projection)
        cursor = FakeCursor(self.docs)
        self.cursors.append(cursor)
        return cursor

    async def find_one(self, query=None):  # type: ignore[no-untyped-def]
        self._record("find_one", query)
        return self.docs[0] if self.docs else None

    async def count_documents(self, query):  # type: ignore[no-untyped-def]
        self._record("count_documents", query)
        return len(self.docs)

    async def distinct(self, key: str) -> list[Any]:
        self._record("distinct", key)
        return sorted({doc[key] for doc in self.docs if key in doc})

    def list_indexes(self) -> FakeCursor:
        return FakeCursor(self.indexes)

    async def insert_one(self, document):  # type: ignore[no-untyped-def]
        self._record("insert_one", document)
        document.setdefault("_id", ObjectId())
        self.docs.append(document)
        return SimpleNamespace(acknowledged=True, inserted_id=document["_id"])

    async def insert_many(self, documents):  # type: ignore[no-untyped-def]
        self._record("insert_many", documents)
        for document in documents:
            document.setdefault("_id", ObjectId())
            self.docs.append(document)
        return SimpleNamespace(acknowledged=True, inserted_ids=[doc["_id"] for doc in documents])

    async def update_one(self, query, update, upsert=False):  # type: ignore[no-untyped-def]
        self._record("update_one", query, update, upsert=upsert)
        return SimpleNamespace(acknowledged=True, matched_count=1, modified_count=1, upserted_id=None)

    async def update_many(self, query, update, upsert=False):  # type: ignore[no-untyped-def]
        self._record("update_many", query, update, upsert=upsert)
        return SimpleNamespace(acknowledged=True, matched_count=3, modified_count=2, upserted_id=None)

    async def delete_one(self, query):  # type: ignore[no-untyped-def]
        self._record("delete_one", query)
        return SimpleNamespace(acknowledged=True, deleted_count=1)

    async def delete_many(self, query):  # type: ignore[no-untyped-def]
        self._record("delete_many", query)
        return SimpleNamespace(acknowledged=True, deleted_count=len(self.docs))

    def aggregate(self, pipeline):  # type: ignore[no-untyped-def]
        self._record("aggregate", pipeline)
        return FakeCursor(self.docs)

    async def create_index(self, keys, **options):  # type: ignore[no-untyped-def]
        self._record("create_index", keys, **options)
        return "_".join(f"{field}_{direction}" for field, direction in keys)

    async def drop(self) -> None:
        self.dropped = True


class FakeDatabase:
    def __init__(self, name: str, client: FakeMongoClient) -> None:
        self.name = name
        self.client = client
        self.collections: dict[str, FakeCollection] = {}
        self.commands: list[tuple[Any, Any, dict[str, Any]]] = []
        self.created: list[str] = []

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name))

    async def command(self, command, value=None, **kwargs):  # type: ignore[no-untyped-def]
        if self.client.delay:
            await asyncio.sleep(self.client.delay)
        if self.client.fail_with is not None:
            raise self.client.fail_with
        self.commands.append((command, value, kwargs))
        name = command if isinstance(command, str) else next(iter(command))
        reply = self.client.replies.get(name, {"ok": 1.0})
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def list_collection_names(self) -> list[str]:
        return sorted(self.collections)

    async def create_collection(self, name: str) -> FakeCollection:
        self.created.append(name)
        return self[name]


class FakeMongoClient:
    def __init__(
        self,
        uri: str,
        options: dict[str, Any],
        *,
        fail_with: BaseException | None = None,
        delay: float = 0.0,
        replies: dict[str, Any] | None = None,
        close_error: BaseException | None = None,
    ) -> None:
        self.uri = uri
        self.options = options
        self.fail_with = fail_with
        self.delay = delay
        self.replies = replies if replies is not None else {}
        self.close_error = close_error
        self.closed = False
        self.databases: dict[str, FakeDatabase] = {}

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.databases.setdefault(name, FakeDatabase(name, self))

    def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeClientFactory:
    """Callable used in place of ``AsyncIOMotorClient``; records every client."""

    def __init__(self) -> None:
        self.clients: list[FakeMongoClient] = []
        self.fail_with: BaseException | None = None
        self.delay = 0.0
        self.replies: dict[str, Any] = {}
        self.close_error: BaseException | None = None

    def __call__(self, uri: str, **options: Any) -> FakeMongoClient:
        client = FakeMongoClient(
            uri,
            options,
            fail_with=self.fail_with,
            delay=self.delay,
            replies=self.replies,
            close_error=self.close_error,
        )
        self.clients.append(client)
        return client


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()
