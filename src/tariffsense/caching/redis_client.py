"""Redis-backed cache for taxonomy ancestor chains.

Cache Keys:
- taxonomy:path:{code} → JSON list of ancestor codes, chapter first (TTL: 7d)

Writes use ``SET NX`` so the first complete chain stored for a code wins and
later writers read it back; a chain is always stored as one value, never
appended to.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Dict, Optional, Tuple

import redis

logger = logging.getLogger(__name__)

PATH_TTL_SECONDS = 604800


class RedisClient:
    """Thin wrapper over ``redis.Redis`` for the taxonomy path keys."""

    def __init__(self, url: Optional[str] = None, *, client: Optional[redis.Redis] = None):
        self.url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._client = client if client is not None else redis.from_url(
            self.url,
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )

    @staticmethod
    def path_key(code: str) -> str:
        return f"taxonomy:path:{code}"

    def get_path(self, code: str) -> Optional[Tuple[str, ...]]:
        data = self._client.get(self.path_key(code))
        if not data:
            return None
        try:
            chain = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(chain, list):
            return None
        return tuple(str(item) for item in chain)

    def set_path_if_absent(self, code: str, chain: Tuple[str, ...], ttl: int = PATH_TTL_SECONDS) -> bool:
        """Store ``chain`` unless a value exists; returns True if this call wrote it."""

        return bool(self._client.set(self.path_key(code), json.dumps(list(chain)), nx=True, ex=ttl))

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.exceptions.RedisError:
            return False


class RedisPathCache:
    """``PathCache`` shared through Redis, fronted by a per-process map.

    Redis errors are logged and the locally computed chain is used, so a
    cache outage slows lookups down but never fails them.
    """

    def __init__(self, client: RedisClient, *, ttl: int = PATH_TTL_SECONDS) -> None:
        self.client = client
        self.ttl = ttl
        self._lock = threading.Lock()
        self._local: Dict[str, Tuple[str, ...]] = {}

    def get(self, code: str) -> Optional[Tuple[str, ...]]:
        with self._lock:
            local = self._local.get(code)
        if local is not None:
            return local
        try:
            remote = self.client.get_path(code)
        except redis.exceptions.RedisError as exc:
            logger.warning("Redis path lookup failed for %s: %s", code, exc)
            return None
        if remote is None:
            return None
        return self._remember(code, remote)

    def put(self, code: str, chain: Tuple[str, ...]) -> Tuple[str, ...]:
        try:
            if not self.client.set_path_if_absent(code, chain, self.ttl):
                stored = self.client.get_path(code)
                if stored is not None:
                    chain = stored
        except redis.exceptions.RedisError as exc:
            logger.warning("Redis path store failed for %s: %s", code, exc)
        return self._remember(code, chain)

    def _remember(self, code: str, chain: Tuple[str, ...]) -> Tuple[str, ...]:
        with self._lock:
            return self._local.setdefault(code, tuple(chain))


# -------------------------------------------------------------------------
# Shared instances, one per URL
# -------------------------------------------------------------------------

_redis_clients: Dict[str, RedisClient] = {}
_clients_lock = threading.Lock()


def get_redis_client(url: Optional[str] = None) -> RedisClient:
    resolved = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
    with _clients_lock:
        client = _redis_clients.get(resolved)
        if client is None:
            client = _redis_clients[resolved] = RedisClient(resolved)
    return client
