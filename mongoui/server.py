"""Server-level introspection helpers (build info, status, current ops)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bson.errors import BSONError
from pymongo.errors import PyMongoError

from . import extjson
from .connections import MongoClientManager

_BUILD_INFO_FIELDS = (
    "version",
    "gitVersion",
    "modules",
    "allocator",
    "javascriptEngine",
    "sysInfo",
    "versionArray",
    "bits",
    "debug",
    "maxBsonObjectSize",
    "storageEngines",
    "openssl",
    "buildEnvironment",
)

_STATUS_FIELDS = (
    "host",
    "version",
    "process",
    "pid",
    "uptime",
    "uptimeMillis",
    "uptimeEstimate",
    "localTime",
    "connections",
    "network",
    "opcounters",
    "opcountersRepl",
    "mem",
    "storageEngine",
)

_OPERATION_FIELDS = (
    "opid",
    "type",
    "op",
    "ns",
    "command",
    "secs_running",
    "microsecs_running",
    "desc",
    "connectionId",
    "client",
    "appName",
    "active",
    "waitingForLock",
)


async def get_server_info(manager: MongoClientManager, connection_id: str) -> dict[str, Any]:
    client = await manager.get_client(connection_id)
    build_info = await client["admin"].command("buildInfo")
    return extjson.encode(_pick(build_info, _BUILD_INFO_FIELDS))


async def get_server_status(manager: MongoClientManager, connection_id: str) -> dict[str, Any]:
    client = await manager.get_client(connection_id)
    status = await client["admin"].command("serverStatus")
    payload = _pick(status, _STATUS_FIELDS)
    wired_tiger = status.get("wiredTiger")
    if isinstance(wired_tiger, Mapping):
        payload["wiredTiger"] = {"cache": wired_tiger.get("cache")}
    return extjson.encode(payload)


async def get_processlist(manager: MongoClientManager, connection_id: str) -> dict[str, Any]:
    """Active operations on the server, trimmed to the fields the console shows."""

    client = await manager.get_client(connection_id)
    reply = await client["admin"].command({"currentOp": 1, "active": True})
    processes = [_pick(op, _OPERATION_FIELDS) for op in reply.get("inprog", [])]
    return {"processes": extjson.encode(processes)}


async def execute_command(
    manager: MongoClientManager,
    connection_id: str,
    database: str | None,
    command: Mapping[str, Any] | None,
) -> Any:
    """Run an already-parsed command document; server errors come back as data."""

    if not command:
        return {"error": "Command is required"}
    client = await manager.get_client(connection_id)
    try:
        result = await client[database or "admin"].command(extjson.decode(dict(command)))
    except (PyMongoError, BSONError) as exc:
        return {"error": str(exc)}
    return extjson.encode(result)


def _pick(source: Mapping[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: source[name] for name in fields if name in source}


__all__ = ["execute_command", "get_processlist", "get_server_info", "get_server_status"]
