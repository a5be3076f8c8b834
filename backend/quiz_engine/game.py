from __future__ import annotations

import asyncio
import functools
import logging
import math
import random
from typing import Any, Awaitable, Dict, List, Optional, Tuple, TypeVar

from .db import Settings
from .ledger import AnswerLedger
from .models import (
    AnswerRecord,
    AnswerResult,
    JoinResult,
    LeaderboardEntry,
    Participant,
    Question,
    QuestionView,
    QuizSession,
    QuizStats,
    QuizStatus,
    SessionSummary,
)
from .questions import QuestionBank
from .ranking import RankingStore, build_ranking_store
from .results import Result, StoreUnavailableError
from .scoring import calculate_points
from .sessions import SessionStore
from .utils import generate_quiz_id, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUIZ_ID_ATTEMPTS = 20
STATS_TOP_PLAYERS = 3


def guarded(method):
    """Turn a store outage inside ``method`` into a retryable failure result."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except StoreUnavailableError as exc:
            logger.error("%s failed, store unavailable: %s", method.__name__, exc)
            return Result.unavailable(f"Store unavailable, please retry: {exc}")

    return wrapper


class QuizController:
    """Drives quiz sessions through waiting -> in_progress -> completed.

    Every public operation returns a :class:`Result`; nothing here raises for
    an expected outcome. Status transitions and joins are serialized per
    session, answer submissions per (session, participant).
    """

    def __init__(
        self,
        sessions: SessionStore,
        ledger: AnswerLedger,
        ranking: RankingStore,
        bank: QuestionBank,
        *,
        session_ttl: int = 3600,
        max_participants: int = 100,
        default_question_count: int = 10,
        time_limit: int = 30,
        time_bonus_enabled: bool = True,
        store_timeout: float = 5.0,
        rng: Optional[random.Random] = None,
    ):
        self.sessions = sessions
        self.ledger = ledger
        self.ranking = ranking
        self.bank = bank
        self.session_ttl = session_ttl
        self.max_participants = max_participants
        self.default_question_count = default_question_count
        self.time_limit = time_limit
        self.time_bonus_enabled = time_bonus_enabled
        self.store_timeout = store_timeout
        self.rng = rng or random.Random()
        self.locks: Dict[str, asyncio.Lock] = {}
        self.answer_locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _lock(self, quiz_id: str) -> asyncio.Lock:
        self.locks.setdefault(quiz_id, asyncio.Lock())
        return self.locks[quiz_id]

    def _answer_lock(self, quiz_id: str, participant_id: str) -> asyncio.Lock:
        key = (quiz_id, participant_id)
        self.answer_locks.setdefault(key, asyncio.Lock())
        return self.answer_locks[key]

    async def _store(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.store_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(f"store call exceeded {self.store_timeout}s") from exc

    async def _summary(self, session: QuizSession) -> SessionSummary:
        count = await self._store(self.sessions.participant_count(session.quiz_id))
        return SessionSummary(
            quiz_id=session.quiz_id,
            title=session.title,
            status=session.status,
            question_count=len(session.questions),
            current_question=session.current_question_index + 1,
            participant_count=count,
            max_participants=session.max_participants,
            created_at=session.created_at,
            start_time=session.start_time,
            end_time=session.end_time,
        )

    @staticmethod
    def _missing(quiz_id: str) -> Result[Any]:
        return Result.not_found(f"Quiz session {quiz_id} not found")

    async def _purge_expired(self) -> List[str]:
        purged = []
        for quiz_id in await self._store(self.sessions.expired_ids()):
            async with self._lock(quiz_id):
                if await self._store(self.sessions.exists(quiz_id)):
                    continue
                await self._store(self.ranking.clear(quiz_id))
                await self._store(self.ledger.clear(quiz_id))
                await self._store(self.sessions.drop(quiz_id))
                for key in [k for k in self.answer_locks if k[0] == quiz_id]:
                    del self.answer_locks[key]
            self.locks.pop(quiz_id, None)
            purged.append(quiz_id)
        if purged:
            logger.info("Purged %d expired quiz sessions", len(purged))
        return purged

    @guarded
    async def purge_expired(self) -> Result[List[str]]:
        """Reclaim everything held for expired sessions; returns the freed quiz ids."""
        return Result.success(await self._purge_expired())

    # ------------------------------------------------------------------
    # lifecycle

    @guarded
    async def create_quiz(
        self,
        title: str,
        question_count: Optional[int] = None,
        max_participants: Optional[int] = None,
    ) -> Result[SessionSummary]:
        title = (title or "").strip()
        if not title:
            return Result.invalid("Quiz title must not be empty")
        count = self.default_question_count if question_count is None else question_count
        if count < 1:
            return Result.invalid("A quiz needs at least one question")
        capacity = self.max_participants if max_participants is None else max_participants
        if capacity < 1:
            return Result.invalid("A quiz must admit at least one participant")

        await self._purge_expired()
        questions = self.bank.balanced_questions(count, self.rng)
        if not questions:
            return Result.invalid("The question bank has no questions to offer")

        for _ in range(QUIZ_ID_ATTEMPTS):
            quiz_id = generate_quiz_id(self.rng)
            if not await self._store(self.sessions.exists(quiz_id)):
                break
        else:
            return Result.unavailable("Could not allocate a free quiz code")

        session = QuizSession(
            quiz_id=quiz_id,
            title=title,
            questions=questions,
            max_participants=capacity,
        )
        async with self._lock(quiz_id):
            await self._store(self.ranking.clear(quiz_id))
            await self._store(self.ledger.clear(quiz_id))
            await self._store(self.sessions.create(quiz_id, session, self.session_ttl))

        logger.info("Created quiz session %s - %s (%d questions)", quiz_id, title, len(questions))
        return Result.success(await self._summary(session))

    @guarded
    async def join_quiz(
        self,
        quiz_id: str,
        participant_id: str,
        display_name: str,
        delivery_address: str,
    ) -> Result[JoinResult]:
        async with self._lock(quiz_id):
            session = await self._store(self.sessions.get(quiz_id))
            if not session:
                return self._missing(quiz_id)
            if session.status == QuizStatus.COMPLETED:
                return Result.precondition("Quiz has already finished")

            existing = await self._store(self.sessions.get_participant(quiz_id, participant_id))
            if existing:
                # only the address changes; a concurrent submit owns score and counters
                moved = await self._store(
                    self.sessions.set_delivery_address(quiz_id, participant_id, delivery_address)
                )
                if not moved:
                    return self._missing(quiz_id)
                # repairs a first join whose ranking registration failed
                await self._store(self.ranking.register(quiz_id, participant_id))
                existing.delivery_address = delivery_address
                logger.info("Participant %s reconnected to quiz %s", participant_id, quiz_id)
                return Result.success(
                    JoinResult(session=await self._summary(session), participant=existing, reconnected=True)
                )

            count = await self._store(self.sessions.participant_count(quiz_id))
            if count >= session.max_participants:
                return Result.precondition("Quiz is full")

            participant = Participant(
                participant_id=participant_id,
                display_name=display_name,
                delivery_address=delivery_address,
            )
            if not await self._store(self.sessions.put_participant(quiz_id, participant)):
                return self._missing(quiz_id)
            await self._store(self.ranking.register(quiz_id, participant_id))

        logger.info("Participant %s (%s) joined quiz %s", display_name, participant_id, quiz_id)
        return Result.success(JoinResult(session=await self._summary(session), participant=participant))

    @guarded
    async def start_quiz(self, quiz_id: str) -> Result[SessionSummary]:
        async with self._lock(quiz_id):
            session = await self._store(self.sessions.get(quiz_id))
            if not session:
                return self._missing(quiz_id)
            if session.status != QuizStatus.WAITING:
                return Result.precondition("Quiz has already started or completed")

            count = await self._store(self.sessions.participant_count(quiz_id))
            if count == 0:
                return Result.precondition("Cannot start quiz with no participants")

            session.status = QuizStatus.IN_PROGRESS
            session.start_time = utcnow()
            session.current_question_index = 0
            if not await self._store(self.sessions.update(quiz_id, session)):
                return self._missing(quiz_id)

        logger.info("Started quiz %s with %d participants", quiz_id, count)
        return Result.success(await self._summary(session))

    @guarded
    async def get_current_question(self, quiz_id: str) -> Result[QuestionView]:
        session = await self._store(self.sessions.get(quiz_id))
        if not session:
            return self._missing(quiz_id)
        if session.status == QuizStatus.WAITING:
            return Result.precondition("Quiz has not started yet")
        index = session.current_question_index
        if session.status == QuizStatus.COMPLETED or index >= len(session.questions):
            return Result.precondition("No more questions available")
        return Result.success(
            QuestionView(
                question=session.questions[index].sanitized(),
                question_number=index + 1,
                total_questions=len(session.questions),
            )
        )

    @guarded
    async def advance_question(self, quiz_id: str) -> Result[QuestionView]:
        async with self._lock(quiz_id):
            session = await self._store(self.sessions.get(quiz_id))
            if not session:
                return self._missing(quiz_id)
            if session.status == QuizStatus.WAITING:
                return Result.precondition("Quiz has not started yet")

            total = len(session.questions)
            if session.status == QuizStatus.COMPLETED:
                return Result.success(QuestionView(question_number=total, total_questions=total, completed=True))

            next_index = session.current_question_index + 1
            if next_index >= total:
                session.status = QuizStatus.COMPLETED
                session.end_time = utcnow()
                if not await self._store(self.sessions.update(quiz_id, session)):
                    return self._missing(quiz_id)
                logger.info("Completed quiz %s", quiz_id)
                return Result.success(
                    QuestionView(question_number=total, total_questions=total, completed=True, just_completed=True)
                )

            session.current_question_index = next_index
            if not await self._store(self.sessions.update(quiz_id, session)):
                return self._missing(quiz_id)

        logger.debug("Quiz %s moved to question %d/%d", quiz_id, next_index + 1, total)
        return Result.success(
            QuestionView(
                question=session.questions[next_index].sanitized(),
                question_number=next_index + 1,
                total_questions=total,
            )
        )

    # ------------------------------------------------------------------
    # answers

    @guarded
    async def submit_answer(
        self,
        quiz_id: str,
        participant_id: str,
        question_id: str,
        answer: str,
        time_taken: float,
    ) -> Result[AnswerResult]:
        if not math.isfinite(time_taken):
            return Result.invalid("time_taken must be a finite number of seconds")

        session = await self._store(self.sessions.get(quiz_id))
        if not session:
            return self._missing(quiz_id)
        if session.status != QuizStatus.IN_PROGRESS:
            return Result.precondition("Quiz is not in progress")

        async with self._answer_lock(quiz_id, participant_id):
            participant = await self._store(self.sessions.get_participant(quiz_id, participant_id))
            if not participant:
                return Result.not_found(f"Participant {participant_id} has not joined quiz {quiz_id}")

            existing = await self._store(self.ledger.get(quiz_id, participant_id, question_id))
            if existing:
                logger.warning(
                    "Participant %s resubmitted an answer for question %s in quiz %s",
                    participant_id,
                    question_id,
                    quiz_id,
                )
                return Result.success(await self._replay(quiz_id, participant_id, question_id, existing))

            question = next((q for q in session.questions if q.id == question_id), None)
            if question is None:
                return Result.not_found(f"Question {question_id} not found")

            await self._store(self.ranking.register(quiz_id, participant_id))

            time_taken = max(0.0, time_taken)
            correct = self.bank.validate_answer(question, answer)
            earned = self._points_for(question, correct, time_taken)

            if earned > 0:
                new_score = await self._store(self.ranking.increment(quiz_id, participant_id, earned))
            else:
                new_score = await self._store(self.ranking.score(quiz_id, participant_id)) or 0

            record = AnswerRecord(
                answer=answer,
                correct=correct,
                correct_answer=question.correct_answer,
                earned_points=earned,
                time_taken=time_taken,
            )
            try:
                written = await self._store(self.ledger.put(quiz_id, participant_id, question_id, record))
            except StoreUnavailableError:
                await self._revert(quiz_id, participant_id, earned)
                raise

            if not written:
                # Lost a race with a writer that bypassed the lock; theirs stands.
                await self._revert(quiz_id, participant_id, earned)
                stored = await self._store(self.ledger.get(quiz_id, participant_id, question_id))
                return Result.success(await self._replay(quiz_id, participant_id, question_id, stored or record))

            try:
                await self._store(self.sessions.record_answer(quiz_id, participant_id, new_score))
            except StoreUnavailableError:
                await self._discard(quiz_id, participant_id, question_id)
                await self._revert(quiz_id, participant_id, earned)
                raise

            rank = await self._position(quiz_id, participant_id)

        logger.debug(
            "Participant %s answered %s in quiz %s: %s (+%d points)",
            participant_id,
            question_id,
            quiz_id,
            "correct" if correct else "incorrect",
            earned,
        )
        return Result.success(
            AnswerResult(
                question_id=question_id,
                correct=correct,
                correct_answer=question.correct_answer,
                earned_points=earned,
                current_score=new_score,
                rank=rank,
            )
        )

    async def _position(self, quiz_id: str, participant_id: str) -> int:
        """1-based standing of a registered participant."""
        rank = await self._store(self.ranking.rank(quiz_id, participant_id))
        if rank is None:
            raise StoreUnavailableError(f"ranking entry for {participant_id} in quiz {quiz_id} is missing")
        return rank + 1

    def _points_for(self, question: Question, correct: bool, time_taken: float) -> int:
        if not self.time_bonus_enabled:
            return question.points if correct else 0
        return calculate_points(question.points, correct, time_taken, self.time_limit)

    async def _replay(self, quiz_id: str, participant_id: str, question_id: str, record: AnswerRecord) -> AnswerResult:
        score = await self._store(self.ranking.score(quiz_id, participant_id))
        return AnswerResult(
            question_id=question_id,
            correct=record.correct,
            correct_answer=record.correct_answer,
            earned_points=record.earned_points,
            current_score=score or 0,
            rank=await self._position(quiz_id, participant_id),
            duplicate=True,
        )

    async def _discard(self, quiz_id: str, participant_id: str, question_id: str) -> None:
        logger.warning("Discarding answer %s of %s in quiz %s", question_id, participant_id, quiz_id)
        try:
            await self._store(self.ledger.discard(quiz_id, participant_id, question_id))
        except StoreUnavailableError:
            logger.error(
                "Could not discard answer %s of %s in quiz %s; it will replay as a duplicate",
                question_id,
                participant_id,
                quiz_id,
            )

    async def _revert(self, quiz_id: str, participant_id: str, earned: int) -> None:
        if earned <= 0:
            return
        logger.warning("Reverting %d points for %s in quiz %s", earned, participant_id, quiz_id)
        try:
            await self._store(self.ranking.increment(quiz_id, participant_id, -earned))
        except StoreUnavailableError:
            logger.error(
                "Could not revert %d points for %s in quiz %s; ranking and ledger disagree",
                earned,
                participant_id,
                quiz_id,
            )

    # ------------------------------------------------------------------
    # reads

    @guarded
    async def get_session(self, quiz_id: str) -> Result[SessionSummary]:
        session = await self._store(self.sessions.get(quiz_id))
        if not session:
            return self._missing(quiz_id)
        return Result.success(await self._summary(session))

    @guarded
    async def quiz_exists(self, quiz_id: str) -> Result[bool]:
        return Result.success(await self._store(self.sessions.exists(quiz_id)))

    @guarded
    async def get_participant(self, quiz_id: str, participant_id: str) -> Result[Participant]:
        participant = await self._store(self.sessions.get_participant(quiz_id, participant_id))
        if not participant:
            return Result.not_found(f"Participant {participant_id} has not joined quiz {quiz_id}")
        return Result.success(participant)

    @guarded
    async def get_participants(self, quiz_id: str) -> Result[List[Participant]]:
        if not await self._store(self.sessions.exists(quiz_id)):
            return self._missing(quiz_id)
        return Result.success(await self._store(self.sessions.participants_for(quiz_id)))

    async def _entries(self, quiz_id: str, standings, enrich: bool) -> List[LeaderboardEntry]:
        names = {
            p.participant_id: p.display_name
            for p in await self._store(self.sessions.participants_for(quiz_id))
        }
        entries = []
        for position, (member, score) in enumerate(standings):
            entry = LeaderboardEntry(
                participant_id=member,
                display_name=names.get(member, "Unknown"),
                score=score,
                rank=position + 1,
            )
            if enrich:
                answers = await self._store(self.ledger.all_for_participant(quiz_id, member))
                entry.correct_answers = sum(1 for a in answers.values() if a.correct)
                entry.total_answers = len(answers)
            entries.append(entry)
        return entries

    @guarded
    async def get_leaderboard(self, quiz_id: str, limit: int = 10) -> Result[List[LeaderboardEntry]]:
        """Top ``limit`` participants with their correct/total answer counts."""
        if limit < 1:
            return Result.invalid("limit must be at least 1")
        if not await self._store(self.sessions.exists(quiz_id)):
            return self._missing(quiz_id)
        standings = await self._store(self.ranking.top(quiz_id, limit))
        return Result.success(await self._entries(quiz_id, standings, enrich=True))

    @guarded
    async def get_full_leaderboard(self, quiz_id: str) -> Result[List[LeaderboardEntry]]:
        if not await self._store(self.sessions.exists(quiz_id)):
            return self._missing(quiz_id)
        standings = await self._store(self.ranking.all(quiz_id))
        return Result.success(await self._entries(quiz_id, standings, enrich=False))

    @guarded
    async def get_quiz_stats(self, quiz_id: str) -> Result[QuizStats]:
        session = await self._store(self.sessions.get(quiz_id))
        if not session:
            return self._missing(quiz_id)
        standings = await self._store(self.ranking.top(quiz_id, STATS_TOP_PLAYERS))
        return Result.success(
            QuizStats(
                session=await self._summary(session),
                top_players=await self._entries(quiz_id, standings, enrich=True),
            )
        )


def build_controller(settings: Settings, database: Any, bank: Optional[QuestionBank] = None) -> QuizController:
    """Wire the stores and the controller for one process."""
    ranking = build_ranking_store(
        settings.RANKING_BACKEND,
        database,
        redis_url=settings.REDIS_URL,
        ttl=settings.QUIZ_SESSION_TTL,
    )
    return QuizController(
        SessionStore(database),
        AnswerLedger(database),
        ranking,
        bank or QuestionBank(),
        session_ttl=settings.QUIZ_SESSION_TTL,
        max_participants=settings.MAX_PARTICIPANTS_PER_QUIZ,
        default_question_count=settings.DEFAULT_QUESTION_COUNT,
        time_limit=settings.QUESTION_TIME_LIMIT,
        time_bonus_enabled=settings.TIME_BONUS_ENABLED,
        store_timeout=settings.STORE_TIMEOUT_SECONDS,
    )
