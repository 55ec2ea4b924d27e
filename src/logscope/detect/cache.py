"""Schema cache keyed by source identity.

A schema accepted for a file (typically one returned by external inference)
is remembered so the next session on the same file can skip heuristics and
inference entirely.

Key schema:
    logscope:schema:{sha1(absolute path)}

Every implementation is best-effort: ``load`` returns None on any failure and
``save`` returns False; callers log and carry on.

Usage::

    from logscope.detect.cache import RedisSchemaCache, source_identity

    cache = RedisSchemaCache(url="redis://localhost:6379/0", ttl=86400)
    source_id = source_identity("/var/log/app.log")
    schema = cache.load(source_id)
    if schema is None:
        schema = classify(sample).schema
        cache.save(source_id, schema)
"""
from __future__ import annotations

import hashlib
import logging
import os
import threading
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from ..config import Settings
from ..models import Schema

logger = logging.getLogger(__name__)

KEY_PREFIX = "logscope:schema:"


def source_identity(path: str) -> str:
    """Stable identity for a file source: its absolute path. '' for stdin/demo."""
    if not path or not path.strip() or path == "-":
        return ""
    return os.path.abspath(path)


def make_cache_key(source_id: str) -> str:
    digest = hashlib.sha1(source_id.encode()).hexdigest()
    return f"{KEY_PREFIX}{digest}"


@runtime_checkable
class SchemaCache(Protocol):
    """Collaborator consulted before detection and updated after inference."""

    def load(self, source_id: str) -> Schema | None: ...

    def save(self, source_id: str, schema: Schema) -> bool: ...


class NullSchemaCache:
    """Cache disabled: always misses, never stores."""

    def load(self, source_id: str) -> Schema | None:
        return None

    def save(self, source_id: str, schema: Schema) -> bool:
        return False


class MemorySchemaCache:
    """Process-local cache, mostly useful for tests and single-run tools."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def load(self, source_id: str) -> Schema | None:
        if not source_id:
            return None
        with self._lock:
            raw = self._data.get(make_cache_key(source_id))
        if raw is None:
            return None
        return Schema.model_validate_json(raw)

    def save(self, source_id: str, schema: Schema) -> bool:
        if not source_id:
            return False
        with self._lock:
            self._data[make_cache_key(source_id)] = schema.to_json()
        return True

    def __len__(self) -> int:
        return len(self._data)


class RedisSchemaCache:
    """Redis-backed schema cache.

    Gracefully degrades to a no-op when the Redis client is unavailable —
    the caller never needs to handle cache errors.

    Args:
        url:  Redis connection URL (redis://host:port/db).
        ttl:  Time-to-live in seconds for cached schemas.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", ttl: int = 30 * 24 * 3600) -> None:
        self._url = url
        self._ttl = ttl
        self._client: Any = None
        self._connect()

    def _connect(self) -> None:
        try:
            import redis  # type: ignore[import-untyped]

            self._client = redis.Redis.from_url(self._url, decode_responses=True)
            self._client.ping()
            logger.debug("schema cache: redis connected at %s", self._url)
        except Exception as exc:
            logger.warning("schema cache: redis unavailable, caching disabled: %s", exc)
            self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, source_id: str) -> Schema | None:
        """Return the cached schema for source_id, or None on miss / error."""
        if self._client is None or not source_id:
            return None
        key = make_cache_key(source_id)
        try:
            raw = self._client.get(key)
        except Exception as exc:
            logger.warning("schema cache: get failed for %s: %s", source_id, exc)
            return None
        if raw is None:
            return None
        try:
            return Schema.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("schema cache: discarding corrupt entry %s: %s", key, exc)
            return None

    def save(self, source_id: str, schema: Schema) -> bool:
        """Store schema under source_id with the configured TTL. False on error."""
        if self._client is None or not source_id:
            return False
        try:
            self._client.setex(make_cache_key(source_id), self._ttl, schema.to_json())
            logger.info("schema cache: saved %s for %s", schema.format_name, source_id)
            return True
        except Exception as exc:
            logger.warning("schema cache: set failed for %s: %s", source_id, exc)
            return False

    def invalidate(self, source_id: str) -> bool:
        """Forget the schema for source_id. Returns True if one was stored."""
        if self._client is None or not source_id:
            return False
        try:
            return bool(self._client.delete(make_cache_key(source_id)))
        except Exception as exc:
            logger.warning("schema cache: invalidate failed for %s: %s", source_id, exc)
            return False

    @property
    def available(self) -> bool:
        """True when the Redis connection is healthy."""
        return self._client is not None


def open_cache(settings: Settings) -> SchemaCache:
    """Build the cache a session should use from Settings."""
    if settings.no_cache:
        logger.info("schema cache: disabled via no_cache")
        return NullSchemaCache()
    return RedisSchemaCache(url=settings.redis_url, ttl=settings.cache_ttl)
