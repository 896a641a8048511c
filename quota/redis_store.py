"""Redis-backed counters; atomicity comes from server-side Lua scripts."""

import logging
from typing import Optional, Tuple

from redis import Redis

from .counter_store import CounterStore

logger = logging.getLogger(__name__)

# KEYS[1] = counter
# ARGV = [ceiling, ttl_seconds]
_LUA_CHECK_AND_INCR = r"""
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local ceiling = tonumber(ARGV[1])
if current >= ceiling then
  return {0, current}
end
local n = redis.call('INCR', KEYS[1])
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
return {1, n}
"""

# KEYS[1] = anon counter, KEYS[2] = user counter, KEYS[3] = link marker
# ARGV = [ttl_seconds]
# Returns -1 when already linked, otherwise the folded count (0 = nothing to fold)
_LUA_LINK = r"""
if redis.call('EXISTS', KEYS[3]) == 1 then
  return -1
end
local count = tonumber(redis.call('GET', KEYS[1]) or '0')
if count <= 0 then
  return 0
end
local ttl = tonumber(ARGV[1])
redis.call('INCRBY', KEYS[2], count)
redis.call('EXPIRE', KEYS[2], ttl)
redis.call('SET', KEYS[3], '1', 'EX', ttl)
return count
"""


class RedisCounterStore(CounterStore):
    """Counters stored as plain Redis integers with EXPIRE set to UTC midnight."""

    def __init__(self, client: Redis):
        """
        Initialize Redis counter store.

        Args:
            client: Connected Redis client, built once at process start
        """
        self.client = client
        self._check_and_incr = client.register_script(_LUA_CHECK_AND_INCR)
        self._link = client.register_script(_LUA_LINK)

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        client = Redis.from_url(url, decode_responses=True)
        logger.info(f"Redis counter store connected to {url}")
        return cls(client)

    def check_and_increment(self, key: str, ceiling: int, ttl_seconds: int) -> Tuple[bool, int]:
        allowed, count = self._check_and_incr(keys=[key], args=[ceiling, ttl_seconds])
        return bool(int(allowed)), int(count)

    def get(self, key: str) -> int:
        value = self.client.get(key)
        return int(value) if value else 0

    def ttl(self, key: str) -> Optional[int]:
        remaining = self.client.ttl(key)
        # -2: key missing, -1: key without expiry
        if remaining is None or remaining == -2:
            return None
        return int(remaining)

    def link(self, anon_key: str, user_key: str, marker_key: str, ttl_seconds: int) -> Optional[int]:
        result = int(self._link(keys=[anon_key, user_key, marker_key], args=[ttl_seconds]))
        if result < 0:
            return None
        return result

    def close(self):
        self.client.close()
