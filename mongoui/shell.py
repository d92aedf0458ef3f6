"""Shell-style command interpreter for the MongoDB console.

Commands such as ``db.users.find({"active": true}).limit(5)`` are matched
against a fixed, ordered list of shapes and translated into motor calls. No
JavaScript is evaluated: arguments must be strict JSON (optionally carrying
extended JSON wrappers like ``{"$oid": ...}``).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from bson.errors import BSONError
from pymongo.errors import PyMongoError

from . import extjson
from .connections import MongoClientManager

LOG = logging.getLogger(__name__)

DEFAULT_DATABASE = "admin"

SUPPORTED_COMMANDS: tuple[str, ...] = (
    "db.collection.find()",
    "db.collection.findOne()",
    "db.collection.insert()",
    "db.collection.insertOne()",
    "db.collection.insertMany()",
    "db.collection.updateOne()",
    "db.collection.updateMany()",
    "db.collection.deleteOne()",
    "db.collection.deleteMany()",
    "db.collection.remove()",
    "db.collection.aggregate()",
    "db.collection.countDocuments()",
    "db.collection.count()",
    "db.collection.distinct()",
    "db.collection.getIndexes()",
    "db.collection.createIndex()",
    "db.collection.dropIndex()",
    "db.collection.drop()",
    "db.collection.stats()",
    "db.getCollectionNames()",
    "db.stats()",
    "db.createCollection()",
    "db.dropDatabase()",
    "show dbs",
    "show collections",
    "use <database>",
)


@dataclass(frozen=True, slots=True)
class NamedMethodCall:
    """``db.<collection>.<method>(...)`` with optional cursor modifiers."""

    collection: str
    method: str
    arguments: str = ""
    limit: int | None = None
    skip: int | None = None
    sort: str | None = None


@dataclass(frozen=True, slots=True)
class DatabaseLevelCall:
    """``db.<method>(...)`` against the selected database."""

    method: str
    arguments: str = ""


@dataclass(frozen=True, slots=True)
class RawCommandDocument:
    """A literal JSON command document such as ``{"ping": 1}``."""

    text: str


@dataclass(frozen=True, slots=True)
class ShellDirective:
    """``show dbs``, ``show collections`` and ``use <name>``."""

    kind: str
    argument: str | None = None


ParsedCommand = NamedMethodCall | DatabaseLevelCall | RawCommandDocument | ShellDirective


class InvalidArgument(ValueError):
    """An argument could not be parsed; rendered as ``Invalid <kind> JSON: ...``."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    def as_result(self) -> dict[str, str]:
        return {"error": f"Invalid {self.kind} JSON: {self}"}


_JSON_TYPE_NAMES = {dict: "an object", list: "an array"}

_Shape = tuple[re.Pattern[str], Callable[[re.Match[str]], ParsedCommand]]


def _named(match: re.Match[str]) -> NamedMethodCall:
    return NamedMethodCall(collection=match["coll"], method=match["method"], arguments=match["args"] or "")


_SHAPES: tuple[_Shape, ...] = (
    (re.compile(r"^db\.getCollectionNames\(\s*\)$"), lambda m: DatabaseLevelCall("getCollectionNames")),
    (re.compile(r"^db\.stats\(\s*\)$"), lambda m: DatabaseLevelCall("stats")),
    (re.compile(r"^show\s+(?:dbs|databases)$"), lambda m: ShellDirective("show_dbs")),
    (re.compile(r"^show\s+collections$"), lambda m: ShellDirective("show_collections")),
    (
        re.compile(
            r"^db\.(?P<coll>\w+)\.find\((?P<args>[\s\S]*?)\)"
            r"(?:\.limit\((?P<limit>\d+)\))?"
            r"(?:\.skip\((?P<skip>\d+)\))?"
            r"(?:\.sort\((?P<sort>[\s\S]*?)\))?$"
        ),
        lambda m: NamedMethodCall(
            collection=m["coll"],
            method="find",
            arguments=m["args"] or "",
            limit=int(m["limit"]) if m["limit"] is not None else None,
            skip=int(m["skip"]) if m["skip"] is not None else None,
            sort=m["sort"],
        ),
    ),
    (re.compile(r"^db\.(?P<coll>\w+)\.(?P<method>findOne|countDocuments|count)\((?P<args>[\s\S]*?)\)$"), _named),
    (
        re.compile(r"""^db\.(?P<coll>\w+)\.(?P<method>distinct)\(\s*(?P<args>(['"])[\w.$]+\4)\s*\)$"""),
        _named,
    ),
    (re.compile(r"^db\.(?P<coll>\w+)\.(?P<method>getIndexes|stats|drop)\((?P<args>\s*)\)$"), _named),
    (
        re.compile(
            r"^db\.(?P<coll>\w+)\.(?P<method>insertOne|insertMany|insert|updateOne|updateMany"
            r"|deleteOne|deleteMany|remove|aggregate|createIndex)\((?P<args>[\s\S]*)\)$"
        ),
        _named,
    ),
    (
        re.compile(r"""^db\.(?P<coll>\w+)\.(?P<method>dropIndex)\(\s*(?P<args>(['"]).+\4)\s*\)$"""),
        _named,
    ),
    (re.compile(r"^use\s+(?P<name>[\w-]+)$"), lambda m: ShellDirective("use", m["name"])),
    (
        re.compile(r"""^db\.createCollection\(\s*(['"])(?P<name>[\w.-]+)\1\s*\)$"""),
        lambda m: DatabaseLevelCall("createCollection", m["name"]),
    ),
    (re.compile(r"^db\.dropDatabase\(\s*\)$"), lambda m: DatabaseLevelCall("dropDatabase")),
)


def parse_command(text: str) -> ParsedCommand | None:
    """Match ``text`` against the supported shapes; ``None`` when nothing fits."""

    command = text.strip()
    for pattern, build in _SHAPES:
        match = pattern.match(command)
        if match:
            return build(match)
    if command.startswith("{"):
        return RawCommandDocument(command)
    return None


def split_arguments(text: str) -> list[str]:
    """Split call arguments on top-level commas, respecting brackets and strings."""

    parts: list[str] = []
    depth = 0
    quote: str | None = None
    escaped = False
    start = 0
    for index, char in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "\"'":
            quote = char
        elif char in "{[(":
            depth += 1
        elif char in "}])":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(text[start:index].strip())
            start = index + 1
    tail = text[start:].strip()
    if tail or parts:
        parts.append(tail)
    return parts


def parse_json_argument(text: str, kind: str, expected: type | tuple[type, ...] | None = None) -> Any:
    """Parse one JSON argument and decode extended JSON wrappers."""

    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidArgument(kind, str(exc)) from exc
    if expected is not None and not isinstance(value, expected):
        names = expected if isinstance(expected, tuple) else (expected,)
        label = " or ".join(_JSON_TYPE_NAMES.get(item, item.__name__) for item in names)
        raise InvalidArgument(kind, f"expected {label}")
    return extjson.decode(value)


def unknown_command_result() -> dict[str, Any]:
    return {
        "error": "Unknown command. Supported commands: "
        + ", ".join(SUPPORTED_COMMANDS)
        + ', or JSON commands like { "ping": 1 }',
        "supported": list(SUPPORTED_COMMANDS),
    }


class CommandInterpreter:
    """Runs shell-style commands against pooled clients.

    The interpreter keeps no state between calls. ``use <name>`` only reports
    the database the caller should switch to.
    """

    def __init__(self, manager: MongoClientManager, *, find_limit: int | None = None) -> None:
        self._manager = manager
        self._find_limit = find_limit if find_limit is not None else manager.settings.find_limit

    async def execute(self, connection_id: str, database: str | None, command_text: str) -> Any:
        """Run one command and return an extended JSON result or ``{"error": ...}``.

        Pool failures (:class:`~mongoui.connections.ConnectionManagerError`)
        are raised; bad input and server errors come back as data.
        """

        command = (command_text or "").strip()
        if not command:
            return {"error": "Command is required"}
        client = await self._manager.get_client(connection_id)
        db = client[database or DEFAULT_DATABASE]

        parsed = parse_command(command)
        if parsed is None:
            return unknown_command_result()
        try:
            result = await self._dispatch(client, db, parsed)
        except InvalidArgument as exc:
            return exc.as_result()
        except (PyMongoError, BSONError, TypeError, ValueError) as exc:
            LOG.debug("Shell command failed", extra={"connection": connection_id}, exc_info=True)
            return {"error": str(exc)}
        return extjson.encode(result)

    async def _dispatch(self, client: Any, db: Any, parsed: ParsedCommand) -> Any:
        if isinstance(parsed, ShellDirective):
            return await self._run_directive(client, db, parsed)
        if isinstance(parsed, DatabaseLevelCall):
            return await self._run_database_call(db, parsed)
        if isinstance(parsed, RawCommandDocument):
            document = parse_json_argument(parsed.text, "command", dict)
            return await db.command(document)
        handler = self._COLLECTION_HANDLERS[parsed.method]
        return await handler(self, db, parsed)

    async def _run_directive(self, client: Any, db: Any, directive: ShellDirective) -> Any:
        if directive.kind == "use":
            return {"message": f"switched to db {directive.argument}", "database": directive.argument}
        if directive.kind == "show_dbs":
            reply = await client["admin"].command("listDatabases")
            return reply.get("databases", [])
        return await db.list_collection_names()

    async def _run_database_call(self, db: Any, call: DatabaseLevelCall) -> Any:
        if call.method == "getCollectionNames":
            return await db.list_collection_names()
        if call.method == "stats":
            return await db.command("dbStats")
        if call.method == "createCollection":
            await db.create_collection(call.arguments)
            return {"created": call.arguments}
        await db.command("dropDatabase")
        return {"dropped": True}

    async def _find(self, db: Any, call: NamedMethodCall) -> Any:
        args = split_arguments(call.arguments)
        query = parse_json_argument(args[0], "filter", dict) if args and args[0] else {}
        projection = parse_json_argument(args[1], "projection", dict) if len(args) > 1 and args[1] else None
        sort = parse_json_argument(call.sort, "sort", dict) if call.sort and call.sort.strip() else None

        cursor = db[call.collection].find(query, projection)
        if sort:
            cursor = cursor.sort(list(sort.items()))
        if call.skip:
            cursor = cursor.skip(call.skip)
        cursor = cursor.limit(call.limit if call.limit is not None else self._find_limit)
        return await cursor.to_list(length=None)

    async def _find_one(self, db: Any, call: NamedMethodCall) -> Any:
        return await db[call.collection].find_one(_optional_filter(call.arguments))

    async def _count(self, db: Any, call: NamedMethodCall) -> Any:
        count = await db[call.collection].count_documents(_optional_filter(call.arguments))
        return {"count": count}

    async def _distinct(self, db: Any, call: NamedMethodCall) -> Any:
        return await db[call.collection].distinct(call.arguments.strip()[1:-1])

    async def _get_indexes(self, db: Any, call: NamedMethodCall) -> Any:
        return await db[call.collection].list_indexes().to_list(length=None)

    async def _collection_stats(self, db: Any, call: NamedMethodCall) -> Any:
        return await db.command("collStats", call.collection)

    async def _drop(self, db: Any, call: NamedMethodCall) -> Any:
        await db[call.collection].drop()
        return {"dropped": True}

    async def _insert_one(self, db: Any, call: NamedMethodCall) -> Any:
        document = parse_json_argument(call.arguments, "document", dict)
        result = await db[call.collection].insert_one(document)
        return {"acknowledged": result.acknowledged, "insertedId": result.inserted_id}

    async def _insert(self, db: Any, call: NamedMethodCall) -> Any:
        payload = parse_json_argument(call.arguments, "document", (dict, list))
        if isinstance(payload, list):
            return await self._insert_documents(db, call.collection, payload)
        result = await db[call.collection].insert_one(payload)
        return {"acknowledged": result.acknowledged, "insertedId": result.inserted_id}

    async def _insert_many(self, db: Any, call: NamedMethodCall) -> Any:
        documents = parse_json_argument(call.arguments, "documents", list)
        return await self._insert_documents(db, call.collection, documents)

    async def _insert_documents(self, db: Any, collection: str, documents: list[Any]) -> Any:
        result = await db[collection].insert_many(documents)
        return {
            "acknowledged": result.acknowledged,
            "insertedCount": len(result.inserted_ids),
            "insertedIds": list(result.inserted_ids),
        }

    async def _update(self, db: Any, call: NamedMethodCall) -> Any:
        args = split_arguments(call.arguments)
        if len(args) not in (2, 3):
            raise InvalidArgument("update", f"{call.method}() expects a filter and an update document")
        query = parse_json_argument(args[0], "filter", dict)
        update = parse_json_argument(args[1], "update", (dict, list))
        options = parse_json_argument(args[2], "options", dict) if len(args) == 3 else {}
        collection = db[call.collection]
        method = collection.update_one if call.method == "updateOne" else collection.update_many
        result = await method(query, update, upsert=bool(options.get("upsert", False)))
        return {
            "acknowledged": result.acknowledged,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedId": result.upserted_id,
        }

    async def _delete(self, db: Any, call: NamedMethodCall) -> Any:
        query = parse_json_argument(call.arguments, "filter", dict)
        collection = db[call.collection]
        method = collection.delete_one if call.method == "deleteOne" else collection.delete_many
        result = await method(query)
        return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}

    async def _aggregate(self, db: Any, call: NamedMethodCall) -> Any:
        pipeline = parse_json_argument(call.arguments, "pipeline", list)
        return await db[call.collection].aggregate(pipeline).to_list(length=None)

    async def _create_index(self, db: Any, call: NamedMethodCall) -> Any:
        args = split_arguments(call.arguments)
        keys = parse_json_argument(args[0] if args else "", "keys", dict)
        options = parse_json_argument(args[1], "options", dict) if len(args) > 1 else {}
        name = await db[call.collection].create_index(list(keys.items()), **options)
        return {"indexName": name}

    async def _drop_index(self, db: Any, call: NamedMethodCall) -> Any:
        index_name = call.arguments.strip()[1:-1]
        return await db.command("dropIndexes", call.collection, index=index_name)

    _COLLECTION_HANDLERS: dict[str, Callable[..., Any]] = {
        "find": _find,
        "findOne": _find_one,
        "countDocuments": _count,
        "count": _count,
        "distinct": _distinct,
        "getIndexes": _get_indexes,
        "stats": _collection_stats,
        "drop": _drop,
        "insertOne": _insert_one,
        "insert": _insert,
        "insertMany": _insert_many,
        "updateOne": _update,
        "updateMany": _update,
        "deleteOne": _delete,
        "deleteMany": _delete,
        "remove": _delete,
        "aggregate": _aggregate,
        "createIndex": _create_index,
        "dropIndex": _drop_index,
    }


async def interpret_and_execute(
    manager: MongoClientManager,
    connection_id: str,
    database: str | None,
    command_text: str,
) -> Any:
    """Convenience wrapper running a single command through a fresh interpreter."""

    return await CommandInterpreter(manager).execute(connection_id, database, command_text)


def _optional_filter(text: str) -> Any:
    return parse_json_argument(text, "filter", dict) if text.strip() else {}


__all__ = [
    "CommandInterpreter",
    "DatabaseLevelCall",
    "InvalidArgument",
    "NamedMethodCall",
    "ParsedCommand",
    "RawCommandDocument",
    "SUPPORTED_COMMANDS",
    "ShellDirective",
    "interpret_and_execute",
    "parse_command",
    "parse_json_argument",
    "split_arguments",
]
