"""Connection pooling and shell command translation for a MongoDB console."""

from __future__ import annotations

from .config import AppConfig, ConnectionRecord, PoolSettings, load_config, load_connections
from .connections import (
    ConnectionFailedError,
    ConnectionManagerError,
    ConnectionNotFoundError,
    MongoClientManager,
    build_uri,
)
from .models import ConnectionTestResult, PooledClient
from .shell import CommandInterpreter, interpret_and_execute, parse_command

__all__ = [
    "AppConfig",
    "CommandInterpreter",
    "ConnectionFailedError",
    "ConnectionManagerError",
    "ConnectionNotFoundError",
    "ConnectionRecord",
    "ConnectionTestResult",
    "MongoClientManager",
    "PoolSettings",
    "PooledClient",
    "build_uri",
    "interpret_and_execute",
    "load_config",
    "load_connections",
    "parse_command",
]
