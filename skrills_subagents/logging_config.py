"""Logging configuration for the subagent server.

Console output goes to stderr so stdio MCP traffic on stdout is untouched.
When REDIS_HOST is set, log entries are also shipped to daily Redis lists.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import redis

if TYPE_CHECKING:
    from logging import LogRecord

LOG_LEVEL_ENV = "SKRILLS_LOG_LEVEL"
LOG_RETENTION_SECONDS = 7 * 24 * 60 * 60

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
    }
)


class RedisHandler(logging.Handler):
    """Logging handler pushing JSON entries to ``{key_prefix}:{YYYY-MM-DD}`` lists."""

    def __init__(
        self,
        host: str,
        port: int = 6379,
        key_prefix: str = "logs",
        additional_fields: dict | None = None,
        client: redis.Redis | None = None,
    ):
        super().__init__()
        self.client = client or redis.Redis(host=host, port=port, decode_responses=True)
        self.key_prefix = key_prefix
        self.additional_fields = additional_fields or {}

    def key_for(self, now: datetime) -> str:
        return f"{self.key_prefix}:{now.strftime('%Y-%m-%d')}"

    def build_entry(self, record: LogRecord, now: datetime) -> dict:
        entry = {
            "@timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **self.additional_fields,
        }
        entry.update({k: v for k, v in record.__dict__.items() if k not in _STANDARD_RECORD_ATTRS})
        if record.exc_info:
            entry["exception"] = self.format(record)
        return entry

    def emit(self, record: LogRecord) -> None:
        # Skip the client's own records to avoid recursion.
        if record.name.startswith("redis"):
            return
        try:
            now = datetime.now(UTC)
            key = self.key_for(now)
            self.client.rpush(key, json.dumps(self.build_entry(record, now), default=str))
            self.client.expire(key, LOG_RETENTION_SECONDS)
        except Exception:
            self.handleError(record)


def setup_logging(
    app_name: str = "skrills-subagents",
    log_level: str | None = None,
    log_file: str | None = None,
    use_console: bool = True,
    redis_host: str | None = None,
    redis_port: int | None = None,
) -> logging.Logger:
    """Configure root logging with console, file and optional Redis handlers.

    Args:
        app_name: Application name attached to Redis log entries
        log_level: Logging level (defaults to SKRILLS_LOG_LEVEL env var or INFO)
        log_file: Optional file path for file handler
        use_console: Whether to log to stderr
        redis_host: Redis host (default: from REDIS_HOST env var)
        redis_port: Redis port (default: from REDIS_PORT env var or 6379)

    Returns:
        Configured root logger
    """
    level_name = (log_level or os.getenv(LOG_LEVEL_ENV) or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if use_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    if log_file:
        file = logging.FileHandler(log_file)
        file.setFormatter(formatter)
        root_logger.addHandler(file)

    host = redis_host or os.getenv("REDIS_HOST")
    port = redis_port or int(os.getenv("REDIS_PORT", "6379"))
    if host:
        try:
            client = redis.Redis(host=host, port=port, decode_responses=True, socket_timeout=2)
            client.ping()
            handler = RedisHandler(
                host=host,
                port=port,
                additional_fields={"application": app_name, "environment": os.getenv("ENVIRONMENT", "develop")},
                client=client,
            )
            handler.setLevel(logging.INFO)
            root_logger.addHandler(handler)
            root_logger.info(f"Redis logging enabled: {host}:{port}")
        except redis.RedisError as e:
            root_logger.warning(f"Redis logging disabled: {e}")

    return root_logger
