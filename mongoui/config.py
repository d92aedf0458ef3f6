"""App configuration loading helpers."""

from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import Any

import tomllib

from pydantic import BaseModel, Field, ValidationError, model_validator

CONFIG_FILE = Path.home() / ".config" / "mongoui" / "config.toml"

LOG = logging.getLogger(__name__)

_BARE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_TOML_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


class PoolSettings(BaseModel):
    """Tuning knobs for the pooled client manager."""

    max_pool_size: int = 10
    min_pool_size: int = 1
    idle_timeout: float = 300.0
    sweep_interval: float = 60.0
    connect_timeout: float = 10.0
    test_timeout: float = 5.0
    find_limit: int = 20


class ConnectionRecord(BaseModel):
    """A saved MongoDB connection as stored in config.toml."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    host: str = ""
    port: int = 27017
    username: str = ""
    password: str = ""
    auth_database: str = "admin"
    uri: str = ""
    options: dict[str, Any] = Field(default_factory=dict)
    auto_connect: bool = True

    @model_validator(mode="after")
    def _require_target(self) -> ConnectionRecord:
        if not self.uri and not self.host:
            raise ValueError("Either host or uri is required")
        return self

    @property
    def has_auth(self) -> bool:
        return bool(self.username and self.password)

    def public_view(self) -> dict[str, object]:
        """Record fields that are safe to show to a client (no password)."""

        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "auth_database": self.auth_database or "admin",
            "has_auth": self.has_auth,
            "auto_connect": self.auto_connect,
        }


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    pool: PoolSettings = Field(default_factory=PoolSettings)
    connections: list[ConnectionRecord] = Field(default_factory=list)

    def connection(self, connection_id: str) -> ConnectionRecord | None:
        for record in self.connections:
            if record.id == connection_id:
                return record
        return None

    def with_connection(self, record: ConnectionRecord) -> AppConfig:
        """Return a copy with the record added, or replaced when the id exists."""

        connections = [entry for entry in self.connections if entry.id != record.id]
        index = next(
            (idx for idx, entry in enumerate(self.connections) if entry.id == record.id),
            len(connections),
        )
        connections.insert(index, record)
        return self.model_copy(update={"connections": connections})

    def without_connection(self, connection_id: str) -> AppConfig:
        """Return a copy with the given connection removed."""

        connections = [entry for entry in self.connections if entry.id != connection_id]
        return self.model_copy(update={"connections": connections})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return AppConfig()

    pool_data = data.get("pool")
    try:
        pool = PoolSettings(**pool_data) if isinstance(pool_data, dict) else PoolSettings()
    except ValidationError:
        pool = PoolSettings()

    connections: list[ConnectionRecord] = []
    for entry in data.get("connections", []):  # type: ignore[union-attr]
        if not entry.get("id"):
            entry = {**entry, "id": _stable_id(entry)}
        try:
            connections.append(ConnectionRecord(**entry))
        except ValidationError as exc:
            LOG.warning("Skipping invalid connection %r: %s", entry.get("name", ""), exc)
            continue
    return AppConfig(pool=pool, connections=connections)


def load_connections() -> list[ConnectionRecord]:
    """Read the saved connections fresh from disk."""

    return load_config().connections


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = ["[pool]"]
    for key, value in config.pool.model_dump().items():
        lines.append(f"{key} = {_toml_value(value)}")
    for record in config.connections:
        lines.append("")
        lines.append("[[connections]]")
        lines.append(f"id = {_toml_value(record.id)}")
        lines.append(f"name = {_toml_value(record.name)}")
        if record.uri:
            lines.append(f"uri = {_toml_value(record.uri)}")
        if record.host:
            lines.append(f"host = {_toml_value(record.host)}")
        lines.append(f"port = {record.port}")
        if record.username:
            lines.append(f"username = {_toml_value(record.username)}")
        if record.password:
            lines.append(f"password = {_toml_value(record.password)}")
        lines.append(f"auth_database = {_toml_value(record.auth_database)}")
        lines.append(f"auto_connect = {_toml_value(record.auto_connect)}")
        if record.options:
            lines.append("")
            lines.append("[connections.options]")
            for key in sorted(record.options):
                if record.options[key] is not None:
                    lines.append(f"{_toml_key(key)} = {_toml_value(record.options[key])}")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if isinstance(raw, dict):
        pool = raw.get("pool")
        if isinstance(pool, dict):
            data["pool"] = dict(pool)
        connections = raw.get("connections")
        if isinstance(connections, list):
            data["connections"] = [dict(entry) for entry in connections if isinstance(entry, dict)]
    return data


def _stable_id(entry: dict[str, Any]) -> str:
    """Derive an id for hand-written entries so it survives reloads."""

    key = "|".join(str(entry.get(field, "")) for field in ("name", "uri", "host", "port", "username"))
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"mongoui:{key}"))


def _toml_key(key: str) -> str:
    return key if _BARE_KEY_RE.match(key) else _toml_string(key)


def _toml_string(text: str) -> str:
    escaped = []
    for char in text:
        if char in _TOML_ESCAPES:
            escaped.append(_TOML_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"\\u{ord(char):04X}")
        else:
            escaped.append(char)
    return '"' + "".join(escaped) + '"'


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    if isinstance(value, dict):
        items = ", ".join(
            f"{_toml_key(str(key))} = {_toml_value(item)}" for key, item in value.items() if item is not None
        )
        return "{" + items + "}"
    return _toml_string(str(value))


__all__ = [
    "CONFIG_FILE",
    "AppConfig",
    "ConnectionRecord",
    "PoolSettings",
    "load_config",
    "load_connections",
    "save_config",
]
