"""Score tables with atomic increments and descending rank queries.

Two interchangeable backends: an in-process one over the in-memory document
database, and one over Redis sorted sets. In both, members with equal scores
are ordered by arrival: whoever was registered first ranks higher.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, List, Optional, Protocol, Tuple, TypeVar

import redis.asyncio as aioredis
from pymongo import ReturnDocument
from redis.exceptions import RedisError

from .results import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Standing = Tuple[str, int]


class RankingStore(Protocol):
    async def register(self, quiz_id: str, member: str) -> None: ...

    async def increment(self, quiz_id: str, member: str, delta: int) -> int: ...

    async def score(self, quiz_id: str, member: str) -> Optional[int]: ...

    async def rank(self, quiz_id: str, member: str) -> Optional[int]: ...

    async def top(self, quiz_id: str, n: int) -> List[Standing]: ...

    async def all(self, quiz_id: str) -> List[Standing]: ...

    async def clear(self, quiz_id: str) -> None: ...


class InMemoryRankingStore:
    def __init__(self, database: Any):
        self.scores = database.scores

    @staticmethod
    def _key(quiz_id: str, member: str) -> dict:
        return {"quiz_id": quiz_id, "member": member}

    async def register(self, quiz_id: str, member: str) -> None:
        await self.scores.find_one_and_update(
            self._key(quiz_id, member), {"$setOnInsert": {"score": 0}}, upsert=True
        )

    async def increment(self, quiz_id: str, member: str, delta: int) -> int:
        doc = await self.scores.find_one_and_update(
            self._key(quiz_id, member),
            {"$inc": {"score": delta}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return doc["score"]

    async def score(self, quiz_id: str, member: str) -> Optional[int]:
        doc = await self.scores.find_one(self._key(quiz_id, member))
        return doc["score"] if doc else None

    async def rank(self, quiz_id: str, member: str) -> Optional[int]:
        for position, (name, _) in enumerate(await self.all(quiz_id)):
            if name == member:
                return position
        return None

    async def top(self, quiz_id: str, n: int) -> List[Standing]:
        if n <= 0:
            return []
        cursor = self.scores.find({"quiz_id": quiz_id}).sort("score", -1).limit(n)
        return [(doc["member"], doc["score"]) async for doc in cursor]

    async def all(self, quiz_id: str) -> List[Standing]:
        cursor = self.scores.find({"quiz_id": quiz_id}).sort("score", -1)
        return [(doc["member"], doc["score"]) async for doc in cursor]

    async def clear(self, quiz_id: str) -> None:
        await self.scores.delete_many({"quiz_id": quiz_id})


# Sorted-set values are score * SCORE_SCALE + tiebreak, tiebreak in [0, SCORE_SCALE).
# Earlier arrivals get a larger tiebreak so they sort first among equal scores.
SCORE_SCALE = 10_000_000


def encode_tiebreak(arrival: int) -> int:
    return SCORE_SCALE - 1 - arrival


def decode_score(value: float) -> int:
    return int(value) // SCORE_SCALE


class RedisRankingStore:
    def __init__(self, client: Any, prefix: str = "quiz", ttl: Optional[int] = None):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisRankingStore":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _scores_key(self, quiz_id: str) -> str:
        return f"{self.prefix}:scores:{quiz_id}"

    def _arrivals_key(self, quiz_id: str) -> str:
        return f"{self.prefix}:arrivals:{quiz_id}"

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except RedisError as exc:
            logger.error("Redis ranking call failed: %s", exc)
            raise StoreUnavailableError(str(exc)) from exc

    async def register(self, quiz_id: str, member: str) -> None:
        key = self._scores_key(quiz_id)
        if await self._call(self.client.zscore(key, member)) is not None:
            return
        arrival = await self._call(self.client.incr(self._arrivals_key(quiz_id)))
        # NX: a concurrent register of the same member keeps whichever landed first
        await self._call(self.client.zadd(key, {member: encode_tiebreak(arrival)}, nx=True))
        if arrival == 1 and self.ttl:
            await self._call(self.client.expire(key, self.ttl))
            await self._call(self.client.expire(self._arrivals_key(quiz_id), self.ttl))

    async def increment(self, quiz_id: str, member: str, delta: int) -> int:
        await self.register(quiz_id, member)
        value = await self._call(self.client.zincrby(self._scores_key(quiz_id), delta * SCORE_SCALE, member))
        return decode_score(value)

    async def score(self, quiz_id: str, member: str) -> Optional[int]:
        value = await self._call(self.client.zscore(self._scores_key(quiz_id), member))
        return None if value is None else decode_score(value)

    async def rank(self, quiz_id: str, member: str) -> Optional[int]:
        return await self._call(self.client.zrevrank(self._scores_key(quiz_id), member))

    async def top(self, quiz_id: str, n: int) -> List[Standing]:
        if n <= 0:
            return []
        rows = await self._call(self.client.zrevrange(self._scores_key(quiz_id), 0, n - 1, withscores=True))
        return [(member, decode_score(value)) for member, value in rows]

    async def all(self, quiz_id: str) -> List[Standing]:
        rows = await self._call(self.client.zrevrange(self._scores_key(quiz_id), 0, -1, withscores=True))
        return [(member, decode_score(value)) for member, value in rows]

    async def clear(self, quiz_id: str) -> None:
        await self._call(self.client.delete(self._scores_key(quiz_id), self._arrivals_key(quiz_id)))


def build_ranking_store(backend: str, database: Any, redis_url: str = "", ttl: Optional[int] = None) -> RankingStore:
    if backend == "redis":
        return RedisRankingStore.from_url(redis_url, ttl=ttl)
    return InMemoryRankingStore(database)
