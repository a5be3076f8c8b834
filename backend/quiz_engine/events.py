from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from .utils import now_ts

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


class EventStore:
    """Ordered broadcast log per quiz; clients poll it with the last ``seq`` they saw.

    Sequence numbers come from a per-quiz counter document and never repeat,
    not even across :meth:`reset`.
    """

    def __init__(self, database: Any):
        self.counters = database.session_event_counters
        self.events = database.session_events

    async def _next_seq(self, quiz_id: str) -> int:
        counter = await self.counters.find_one_and_update(
            {"_id": quiz_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    async def append(self, quiz_id: str, event_type: str, **data: Any) -> int:
        seq = await self._next_seq(quiz_id)
        await self.events.insert_one(
            {"quiz_id": quiz_id, "seq": seq, "timestamp": now_ts(), "payload": dict(data, type=event_type)}
        )
        logger.debug("Event %s #%d for quiz %s", event_type, seq, quiz_id)
        return seq

    async def list(self, quiz_id: str, after: Optional[int] = None, limit: int = 200) -> List[Event]:
        query: Dict[str, Any] = {"quiz_id": quiz_id}
        if after is not None:
            query["seq"] = {"$gt": after}
        docs = await self.events.find(query).sort("seq", 1).limit(limit).to_list()
        return [{"seq": d["seq"], "timestamp": d.get("timestamp"), "payload": d.get("payload", {})} for d in docs]

    async def reset(self, quiz_id: str) -> None:
        """Forget a quiz's history, leaving a single ``session_reset`` marker."""
        await self.events.delete_many({"quiz_id": quiz_id})
        await self.append(quiz_id, "session_reset")

    async def discard(self, quiz_id: str) -> None:
        """Drop a quiz's history and its counter once the quiz is gone for good."""
        await self.events.delete_many({"quiz_id": quiz_id})
        await self.counters.delete_many({"_id": quiz_id})
