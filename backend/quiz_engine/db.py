from __future__ import annotations

import asyncio
import copy
import operator
from functools import lru_cache
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ReturnDocument


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    QUIZ_SESSION_TTL: int = 3600
    MAX_PARTICIPANTS_PER_QUIZ: int = 100
    DEFAULT_QUESTION_COUNT: int = 10
    QUESTION_TIME_LIMIT: int = 30
    TIME_BONUS_ENABLED: bool = True
    STORE_TIMEOUT_SECONDS: float = 5.0
    RANKING_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    LOG_LEVEL: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


QUERY_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
    "$ne": operator.ne,
}


def matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Mongo-style equality and comparison filter over a flat document."""
    for field, expected in (query or {}).items():
        actual = doc.get(field)
        if not isinstance(expected, dict):
            if actual != expected:
                return False
            continue
        for op, operand in expected.items():
            compare = QUERY_OPERATORS.get(op)
            if compare is None:
                raise ValueError(f"Unsupported query operator: {op}")
            if op != "$ne" and actual is None:
                return False
            if not compare(actual, operand):
                return False
    return True


def apply_update(doc: Dict[str, Any], update: Dict[str, Any], *, inserting: bool) -> Dict[str, Any]:
    for op, fields in update.items():
        if op == "$setOnInsert" and not inserting:
            continue
        if op in ("$set", "$setOnInsert"):
            doc.update(copy.deepcopy(fields))
        elif op == "$inc":
            for field, delta in fields.items():
                doc[field] = doc.get(field, 0) + delta
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


class InMemoryCursor:
    """Lazy ``find`` result; the query runs on first iteration."""

    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query
        self._order: Optional[Tuple[str, int]] = None
        self._limit = 0

    def sort(self, key: str, direction: int) -> "InMemoryCursor":
        self._order = (key, direction)
        return self

    def limit(self, limit: int) -> "InMemoryCursor":
        self._limit = limit
        return self

    async def to_list(self) -> List[Dict[str, Any]]:
        docs = await self._collection._snapshot(self._query)
        if self._order:
            key, direction = self._order
            # stable in both directions: ties stay in insertion order
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return docs[: self._limit] if self._limit > 0 else docs

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Dict[str, Any]]:
        for doc in await self.to_list():
            yield doc


class InMemoryCollection:
    """Async document collection with the subset of the Motor API the stores use.

    Every operation runs under one lock, so a single ``find_one_and_update``
    (including ``$inc`` and upserts) is atomic with respect to other callers.
    Documents go in and come out as deep copies.
    """

    def __init__(self):
        self._docs: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    def _positions(self, query: Dict[str, Any]) -> Iterator[int]:
        return (i for i, doc in enumerate(self._docs) if matches(doc, query))

    async def _snapshot(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(self._docs[i]) for i in self._positions(query)]

    def find(self, query: Dict[str, Any]) -> InMemoryCursor:
        return InMemoryCursor(self, query)

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            index = next(self._positions(query), None)
            return None if index is None else copy.deepcopy(self._docs[index])

    async def count_documents(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            return sum(1 for _ in self._positions(query))

    async def insert_one(self, document: Dict[str, Any]) -> None:
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    async def _modify(
        self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool
    ) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """Apply ``update`` to the first match; returns (before, after) copies."""
        async with self._lock:
            index = next(self._positions(query), None)
            if index is not None:
                before = self._docs[index]
                after = apply_update(copy.deepcopy(before), update, inserting=False)
                self._docs[index] = after
                return copy.deepcopy(before), copy.deepcopy(after)
            if not upsert:
                return None, None
            # operator clauses such as {"$gt": ...} filter, they do not seed the new document
            seed = {k: copy.deepcopy(v) for k, v in query.items() if not isinstance(v, dict)}
            created = apply_update(seed, update, inserting=True)
            self._docs.append(created)
            return None, copy.deepcopy(created)

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> bool:
        _, after = await self._modify(query, update, upsert)
        return after is not None

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> Optional[Dict[str, Any]]:
        before, after = await self._modify(query, update, upsert)
        return after if return_document == ReturnDocument.AFTER else before

    async def delete_one(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            index = next(self._positions(query), None)
            if index is None:
                return 0
            del self._docs[index]
            return 1

    async def delete_many(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            kept = [doc for doc in self._docs if not matches(doc, query)]
            removed = len(self._docs) - len(kept)
            self._docs = kept
            return removed


class InMemoryDatabase:
    """Named collections for one process, attribute-compatible with a Motor database."""

    COLLECTIONS = ("sessions", "participants", "answers", "scores", "session_event_counters", "session_events")

    def __init__(self):
        for name in self.COLLECTIONS:
            setattr(self, name, InMemoryCollection())


db: Any = InMemoryDatabase()
