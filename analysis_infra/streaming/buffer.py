"""
Redis-backed transient storage for running jobs.

Keys (all expire so abandoned runs clean themselves up):
- analysis:{job_id}:buffer          append-only log bytes
- analysis:{job_id}:comments_count  reply comments posted during the run
- claim keys used for dedupe (webhook deliveries, PR head commits)
"""

from redis.asyncio import Redis

from ..log_config import get_logger

log = get_logger("buffer_store")

DEFAULT_BUFFER_TTL_SECONDS = 60 * 60 * 4


def buffer_key(job_id: str) -> str:
    return f"analysis:{job_id}:buffer"


def comment_counter_key(job_id: str) -> str:
    return f"analysis:{job_id}:comments_count"


def normalize_chunk(chunk: str) -> str:
    """Return the chunk terminated by exactly one newline."""
    return chunk.rstrip("\r\n") + "\n"


class BufferStore:
    """Job log buffers and comment counters in Redis."""

    def __init__(self, redis: Redis, ttl_seconds: int = DEFAULT_BUFFER_TTL_SECONDS):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def init(self, job_id: str, ttl_seconds: int | None = None) -> None:
        """Create (or reset) an empty buffer for the job."""
        ttl = ttl_seconds or self.ttl_seconds
        await self.redis.set(buffer_key(job_id), b"", ex=ttl)
        log.debug("buffer.init", job_id=job_id, ttl_seconds=ttl)

    async def append(self, job_id: str, chunk: str) -> None:
        key = buffer_key(job_id)
        await self.redis.append(key, normalize_chunk(chunk).encode("utf-8"))
        # APPEND on an expired key recreates it without a TTL
        await self.redis.expire(key, self.ttl_seconds)

    async def read(self, job_id: str) -> bytes | None:
        """Full buffer contents, or None when the buffer does not exist."""
        data = await self.redis.get(buffer_key(job_id))
        if data is None:
            return None
        if isinstance(data, str):
            return data.encode("utf-8")
        return data

    async def delete(self, job_id: str) -> None:
        await self.redis.delete(buffer_key(job_id))

    async def init_comment_counter(self, job_id: str, ttl_seconds: int | None = None) -> None:
        """Create the counter at zero unless a trigger already created it."""
        await self.redis.set(
            comment_counter_key(job_id), 0, ex=ttl_seconds or self.ttl_seconds, nx=True
        )

    async def increment_comment_counter(self, job_id: str, amount: int = 1) -> int:
        key = comment_counter_key(job_id)
        value = await self.redis.incrby(key, amount)
        if value == amount:
            await self.redis.expire(key, self.ttl_seconds)
        return int(value)

    async def take_comment_count(self, job_id: str) -> int:
        """Read and clear the counter in one atomic step."""
        raw = await self.redis.getdel(comment_counter_key(job_id))
        if raw is None:
            return 0
        try:
            return int(raw)
        except (TypeError, ValueError):
            log.warn("buffer.counter_invalid", job_id=job_id, raw=str(raw))
            return 0

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        """Set key if absent. Returns True for the first caller only."""
        return bool(await self.redis.set(key, b"1", ex=ttl_seconds, nx=True))

    async def release(self, key: str) -> None:
        await self.redis.delete(key)
