"""Async Redis client construction for the document store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import redis.asyncio as redis_async

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedisConfig:
    """Parsed Redis connection configuration."""

    url: str
    max_connections: int = 20
    socket_timeout: float = 5.0

    @property
    def safe_url(self) -> str:
        """URL with any password removed, for logging."""
        parsed = urlparse(self.url)
        if parsed.password is None:
            return self.url
        host = parsed.hostname or ""
        port = f":{parsed.port}" if parsed.port else ""
        return f"{parsed.scheme}://***@{host}{port}{parsed.path}"


def create_async_redis(config: RedisConfig, *, decode_responses: bool = True) -> redis_async.Redis:
    """Create an async Redis client from parsed config."""

    logger.info("Creating async Redis client", extra={"redis_url": config.safe_url})
    return redis_async.Redis.from_url(
        config.url,
        decode_responses=decode_responses,
        max_connections=config.max_connections,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_timeout,
    )


__all__ = ["RedisConfig", "create_async_redis"]
