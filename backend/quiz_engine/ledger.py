from __future__ import annotations

from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from .models import AnswerRecord


class AnswerLedger:
    """Which questions each participant has answered, and how it went."""

    def __init__(self, database: Any):
        self.answers = database.answers

    @staticmethod
    def _key(quiz_id: str, participant_id: str, question_id: str) -> dict:
        return {"quiz_id": quiz_id, "participant_id": participant_id, "question_id": question_id}

    async def get(self, quiz_id: str, participant_id: str, question_id: str) -> Optional[AnswerRecord]:
        doc = await self.answers.find_one(self._key(quiz_id, participant_id, question_id))
        return AnswerRecord(**doc) if doc else None

    async def put(self, quiz_id: str, participant_id: str, question_id: str, record: AnswerRecord) -> bool:
        """Write ``record`` unless one already exists for the triple.

        Returns False, leaving the stored record untouched, when it did.
        """
        previous = await self.answers.find_one_and_update(
            self._key(quiz_id, participant_id, question_id),
            {"$setOnInsert": record.model_dump()},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
        return previous is None

    async def all_for_participant(self, quiz_id: str, participant_id: str) -> Dict[str, AnswerRecord]:
        cursor = self.answers.find({"quiz_id": quiz_id, "participant_id": participant_id})
        return {doc["question_id"]: AnswerRecord(**doc) async for doc in cursor}

    async def discard(self, quiz_id: str, participant_id: str, question_id: str) -> None:
        await self.answers.delete_one(self._key(quiz_id, participant_id, question_id))

    async def clear(self, quiz_id: str) -> None:
        await self.answers.delete_many({"quiz_id": quiz_id})
