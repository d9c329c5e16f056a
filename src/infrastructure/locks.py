"""
Redis-based distributed lock.

Every API process runs a handoff-timer worker; the lock makes sure only
one of them sweeps expired / auto-fallback sessions per cycle so two
workers never race on the same GUEST_VERIFIED row.

Acquire is ``SET key token NX EX ttl``; release is a Lua
compare-and-delete so a worker whose lock already timed out cannot
delete a lock now held by someone else.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def release(self) -> None:
        if not self.held:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self):
        if not await self.acquire():
            raise RuntimeError(f"Lock already held: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
