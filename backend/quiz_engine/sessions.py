from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from pymongo import ReturnDocument

from .models import Participant, QuizSession
from .utils import now_ts

logger = logging.getLogger(__name__)


class SessionStore:
    """Quiz sessions and their participants, readable until the session TTL runs out.

    Expiry is evaluated at read time: every lookup filters on ``expires_at``,
    so an expired session is indistinguishable from one that never existed.
    :meth:`expired_ids` and :meth:`drop` reclaim the space afterwards.
    """

    def __init__(self, database: Any, clock: Callable[[], float] = now_ts):
        self.sessions = database.sessions
        self.participants = database.participants
        self._clock = clock

    def _live(self, quiz_id: str) -> dict:
        return {"id": quiz_id, "expires_at": {"$gt": self._clock()}}

    async def create(self, quiz_id: str, session: QuizSession, ttl: int) -> None:
        # A reused code must not inherit anything from an expired session.
        await self.sessions.delete_many({"id": quiz_id})
        await self.participants.delete_many({"quiz_id": quiz_id})
        await self.sessions.insert_one(
            {"id": quiz_id, "expires_at": self._clock() + ttl, **session.model_dump()}
        )
        logger.debug("Stored session %s with ttl=%ss", quiz_id, ttl)

    async def get(self, quiz_id: str) -> Optional[QuizSession]:
        doc = await self.sessions.find_one(self._live(quiz_id))
        return QuizSession(**doc) if doc else None

    async def update(self, quiz_id: str, session: QuizSession) -> bool:
        """Overwrite a live session, keeping its original expiry."""
        doc = await self.sessions.find_one_and_update(
            self._live(quiz_id),
            {"$set": session.model_dump()},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    async def exists(self, quiz_id: str) -> bool:
        return await self.sessions.find_one(self._live(quiz_id)) is not None

    async def put_participant(self, quiz_id: str, participant: Participant) -> bool:
        session_doc = await self.sessions.find_one(self._live(quiz_id))
        if not session_doc:
            return False
        await self.participants.update_one(
            {"quiz_id": quiz_id, "participant_id": participant.participant_id},
            {"$set": {"expires_at": session_doc["expires_at"], **participant.model_dump()}},
            upsert=True,
        )
        return True

    async def get_participant(self, quiz_id: str, participant_id: str) -> Optional[Participant]:
        doc = await self.participants.find_one(self._live_participant(quiz_id, participant_id))
        return Participant(**doc) if doc else None

    async def participants_for(self, quiz_id: str) -> List[Participant]:
        """Participants in join order."""
        cursor = self.participants.find({"quiz_id": quiz_id, "expires_at": {"$gt": self._clock()}})
        return [Participant(**doc) async for doc in cursor]

    async def participant_count(self, quiz_id: str) -> int:
        return await self.participants.count_documents(
            {"quiz_id": quiz_id, "expires_at": {"$gt": self._clock()}}
        )

    def _live_participant(self, quiz_id: str, participant_id: str) -> dict:
        return {"quiz_id": quiz_id, "participant_id": participant_id, "expires_at": {"$gt": self._clock()}}

    async def set_delivery_address(self, quiz_id: str, participant_id: str, address: str) -> bool:
        """Point a joined participant at a new address; score and counters are untouched."""
        return await self.participants.update_one(
            self._live_participant(quiz_id, participant_id), {"$set": {"delivery_address": address}}
        )

    async def record_answer(self, quiz_id: str, participant_id: str, score: int) -> bool:
        return await self.participants.update_one(
            self._live_participant(quiz_id, participant_id),
            {"$inc": {"answers_submitted": 1}, "$set": {"score": score}},
        )

    async def expired_ids(self) -> List[str]:
        cursor = self.sessions.find({"expires_at": {"$lte": self._clock()}})
        return [doc["id"] async for doc in cursor]

    async def drop(self, quiz_id: str) -> None:
        """Delete an expired session and its participants; a live session is left alone."""
        expired = {"expires_at": {"$lte": self._clock()}}
        await self.sessions.delete_many({"id": quiz_id, **expired})
        await self.participants.delete_many({"quiz_id": quiz_id, **expired})
