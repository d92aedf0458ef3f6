"""Pooled MongoDB clients keyed by saved connection id."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import re
import signal
from collections.abc import Callable, Mapping, Sequence
from typing import Any
from urllib.parse import quote

from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import ValidationError

from . import config as config_module
from .config import ConnectionRecord, PoolSettings
from .models import ConnectionTestResult, PooledClient

LOG = logging.getLogger(__name__)

ConnectionLoader = Callable[[], Sequence[ConnectionRecord]]

_UNAUTHORIZED_CODE = 13
_AUTHENTICATION_FAILED_CODE = 18
_CREDENTIALS_RE = re.compile(r"(mongodb(?:\+srv)?://)[^@/\s]+@")


class ConnectionManagerError(RuntimeError):
    """Base class for errors raised by the client manager."""


class ConnectionNotFoundError(ConnectionManagerError):
    """Raised when a connection id has no saved record."""


class ConnectionFailedError(ConnectionManagerError):
    """Raised when a driver client cannot be established."""

    def __init__(self, message: str, *, auth_failed: bool = False) -> None:
        super().__init__(message)
        self.auth_failed = auth_failed


def build_uri(record: ConnectionRecord) -> str:
    """Return the connection string for a record, preferring an explicit URI."""

    if record.uri:
        return record.uri
    uri = "mongodb://"
    if record.username and record.password:
        uri += f"{quote(record.username, safe='')}:{quote(record.password, safe='')}@"
    uri += f"{record.host or 'localhost'}:{record.port or 27017}"
    if record.auth_database and record.username:
        uri += f"/?authSource={quote(record.auth_database, safe='')}"
    return uri


def sanitize_message(message: str, record: ConnectionRecord | None = None) -> str:
    """Strip connection strings and credentials out of a driver error message."""

    text = message
    if record is not None:
        secrets = (record.uri, build_uri(record), record.password, quote(record.password, safe=""))
        for secret in secrets:
            if secret:
                text = text.replace(secret, "****")
    return _CREDENTIALS_RE.sub(r"\1****@", text)


def auth_failure_message(exc: BaseException) -> str | None:
    """Human readable message for authentication errors, ``None`` otherwise."""

    code = getattr(exc, "code", None)
    details = getattr(exc, "details", None) or {}
    code_name = details.get("codeName") if isinstance(details, Mapping) else None
    if code == _UNAUTHORIZED_CODE or code_name == "Unauthorized":
        return "Authentication failed. Please check username and password."
    if code == _AUTHENTICATION_FAILED_CODE:
        return "Authentication failed. Invalid credentials."
    return None


class MongoClientManager:
    """Maps saved connection ids to live, pooled motor clients.

    Connection records are re-read through ``load_connections`` on every
    lookup so deleted records are noticed right away. Clients that sit unused
    for longer than ``settings.idle_timeout`` seconds are closed by a
    background sweep started with :meth:`start`.
    """

    def __init__(
        self,
        load_connections: ConnectionLoader | None = None,
        *,
        settings: PoolSettings | None = None,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._load_connections = load_connections or config_module.load_connections
        self._settings = settings or PoolSettings()
        self._client_factory = client_factory
        self._clients: dict[str, PooledClient | asyncio.Task[PooledClient]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    @property
    def connection_ids(self) -> tuple[str, ...]:
        """Ids with a ready client in the pool (in-flight connects excluded)."""

        return tuple(cid for cid, slot in self._clients.items() if isinstance(slot, PooledClient))

    def pooled(self, connection_id: str) -> PooledClient | None:
        slot = self._clients.get(connection_id)
        return slot if isinstance(slot, PooledClient) else None

    async def get_client(self, connection_id: str) -> Any:
        """Return a connected client for ``connection_id``, creating it on first use."""

        record = self._find_record(connection_id)
        if record is None:
            await self.close_connection(connection_id)
            raise ConnectionNotFoundError(f"Connection not found: {connection_id}")

        slot = self._clients.get(connection_id)
        if isinstance(slot, PooledClient):
            slot.touch()
            return slot.client
        if slot is None:
            slot = asyncio.get_running_loop().create_task(
                self._connect_slot(connection_id, record),
                name=f"mongoui-connect-{connection_id}",
            )
            self._clients[connection_id] = slot
        pooled = await asyncio.shield(slot)
        pooled.touch()
        return pooled.client

    async def get_database(self, connection_id: str, db_name: str) -> Any:
        client = await self.get_client(connection_id)
        return client[db_name]

    async def get_collection(self, connection_id: str, db_name: str, collection_name: str) -> Any:
        database = await self.get_database(connection_id, db_name)
        return database[collection_name]

    async def close_connection(self, connection_id: str) -> None:
        """Close and forget the client for ``connection_id``; a no-op when none exists."""

        slot = self._clients.pop(connection_id, None)
        if slot is None:
            return
        if isinstance(slot, asyncio.Task):
            # The connect task notices the missing slot and closes its own client.
            LOG.debug("Dropped in-flight connect", extra={"connection": connection_id})
            return
        await self._close_client(connection_id, slot.client)
        LOG.info("Closed MongoDB connection", extra={"connection": connection_id})

    async def close_all_connections(self) -> None:
        for connection_id in tuple(self._clients):
            await self.close_connection(connection_id)

    async def test_connection(
        self, record: ConnectionRecord | Mapping[str, Any]
    ) -> ConnectionTestResult:
        """Try a short-lived, unpooled connection and report the outcome."""

        if isinstance(record, Mapping):
            data = dict(record)
            if not data.get("uri") and not data.get("host"):
                data["host"] = "localhost"
            try:
                record = ConnectionRecord(**data)
            except ValidationError as exc:
                return ConnectionTestResult(success=False, message=f"Connection failed: {exc}")

        timeout_ms = int(self._settings.test_timeout * 1000)
        client = None
        try:
            client = self._factory()(
                build_uri(record),
                connectTimeoutMS=timeout_ms,
                serverSelectionTimeoutMS=timeout_ms,
            )
            admin = client["admin"]
            # listDatabases fails when auth is required but missing.
            await admin.command("listDatabases")
            server_info = await admin.command("buildInfo")
        except Exception as exc:
            message = auth_failure_message(exc) or sanitize_message(str(exc), record)
            LOG.debug("Connection test failed", extra={"connection": record.id})
            return ConnectionTestResult(success=False, message=f"Connection failed: {message}")
        finally:
            if client is not None:
                await self._close_client(record.id, client)

        version = str(server_info.get("version", "unknown"))
        return ConnectionTestResult(
            success=True,
            version=version,
            message=f"Successfully connected to MongoDB {version}",
        )

    def start(self) -> None:
        """Start the idle sweep on the running event loop."""

        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(), name="mongoui-idle-sweep"
        )

    async def stop(self) -> None:
        """Cancel the idle sweep and close every pooled client."""

        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.close_all_connections()

    async def sweep_idle(self, now: float | None = None) -> list[str]:
        """Close clients idle for longer than the configured timeout."""

        evicted: list[str] = []
        for connection_id in tuple(self._clients):
            pooled = self.pooled(connection_id)
            if pooled is None or pooled.idle_for(now) <= self._settings.idle_timeout:
                continue
            LOG.info("Evicting idle MongoDB connection", extra={"connection": connection_id})
            await self.close_connection(connection_id)
            evicted.append(connection_id)
        return evicted

    def install_signal_handlers(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
    ) -> None:
        """Close all clients and stop ``loop`` when the process is interrupted."""

        loop = loop or asyncio.get_running_loop()
        for sig in signals:
            loop.add_signal_handler(sig, self._handle_signal, loop, sig)

    async def __aenter__(self) -> MongoClientManager:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _handle_signal(self, loop: asyncio.AbstractEventLoop, sig: signal.Signals) -> None:
        LOG.info("Received %s, closing MongoDB connections", sig.name)
        task = loop.create_task(self.close_all_connections())
        task.add_done_callback(lambda _: loop.stop())

    def _find_record(self, connection_id: str) -> ConnectionRecord | None:
        for record in self._load_connections():
            if record.id == connection_id:
                return record
        return None

    def _factory(self) -> Callable[..., Any]:
        return self._client_factory or AsyncIOMotorClient

    async def _connect_slot(self, connection_id: str, record: ConnectionRecord) -> PooledClient:
        task = asyncio.current_task()
        try:
            client = await self._open(record)
        except BaseException:
            if self._clients.get(connection_id) is task:
                del self._clients[connection_id]
            raise
        if self._clients.get(connection_id) is not task:
            await self._close_client(connection_id, client)
            raise ConnectionManagerError(f"Connection {connection_id} was closed while connecting")
        pooled = PooledClient(connection_id=connection_id, client=client)
        self._clients[connection_id] = pooled
        LOG.info("Opened MongoDB connection", extra={"connection": connection_id})
        return pooled

    async def _open(self, record: ConnectionRecord) -> Any:
        settings = self._settings
        timeout_ms = int(settings.connect_timeout * 1000)
        options: dict[str, Any] = {
            "maxPoolSize": settings.max_pool_size,
            "minPoolSize": settings.min_pool_size,
            "maxIdleTimeMS": int(settings.idle_timeout * 1000),
            "connectTimeoutMS": timeout_ms,
            "serverSelectionTimeoutMS": timeout_ms,
            **record.options,
        }
        client = None
        try:
            client = self._factory()(build_uri(record), **options)
            await client["admin"].command("ping")
        except Exception as exc:
            if client is not None:
                await self._close_client(record.id, client)
            auth_message = auth_failure_message(exc)
            message = auth_message or sanitize_message(str(exc), record)
            raise ConnectionFailedError(
                f"Failed to connect to MongoDB server: {message}",
                auth_failed=auth_message is not None,
            ) from None
        return client

    async def _close_client(self, connection_id: str, client: Any) -> None:
        try:
            result = client.close()
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOG.warning(
                "Error closing MongoDB connection",
                extra={"connection": connection_id},
                exc_info=True,
            )

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sweep_interval)
            await self.sweep_idle()


__all__ = [
    "ConnectionFailedError",
    "ConnectionLoader",
    "ConnectionManagerError",
    "ConnectionNotFoundError",
    "MongoClientManager",
    "auth_failure_message",
    "build_uri",
    "sanitize_message",
]
