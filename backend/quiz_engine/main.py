from typing import Annotated, Any, Optional

from fastapi import FastAPI, HTTPException, Path, Query
from fastapi.middleware.cors import CORSMiddleware

from .connections import ConnectionRegistry
from .db import db, settings
from .events import EventStore
from .game import build_controller
from .logging_config import configure_logging
from .results import ErrorKind, Result
from .schemas import QUIZ_ID_PATTERN, AnswerIn, CreateQuizIn, JoinIn

logger = configure_logging(settings.LOG_LEVEL)

controller = build_controller(settings, db)
event_store = EventStore(db)
connections = ConnectionRegistry()

app = FastAPI(title="Live Quiz API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PRECONDITION: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.UNAVAILABLE: 503,
}

QuizId = Annotated[str, Path(pattern=QUIZ_ID_PATTERN)]


def unwrap(result: Result[Any]) -> Any:
    if result.ok:
        return result.value
    error = result.error
    raise HTTPException(
        status_code=STATUS_BY_KIND[error.kind],
        detail={"kind": error.kind.value, "message": error.message, "retryable": error.retryable},
    )


async def _broadcast_leaderboard(quiz_id: str):
    # the answer is already recorded; a failed read only skips this broadcast
    result = await controller.get_leaderboard(quiz_id, 10)
    if not result.ok:
        logger.warning("Skipped leaderboard broadcast for quiz %s: %s", quiz_id, result.error.message)
        return
    await event_store.append(
        quiz_id,
        "leaderboard_update",
        leaderboard=[entry.model_dump(mode="json") for entry in result.value],
    )


@app.post("/api/quiz")
async def create_quiz(payload: CreateQuizIn):
    for expired_id in unwrap(await controller.purge_expired()):
        await event_store.discard(expired_id)
    summary = unwrap(await controller.create_quiz(payload.title, payload.question_count, payload.max_participants))
    await event_store.reset(summary.quiz_id)
    return {"quiz": summary}


@app.get("/api/questions/stats")
async def question_bank_stats():
    return controller.bank.stats()


@app.get("/api/quiz/{quiz_id}")
async def get_quiz(quiz_id: QuizId):
    return {"quiz": unwrap(await controller.get_session(quiz_id))}


@app.get("/api/quiz/{quiz_id}/stats")
async def get_quiz_stats(quiz_id: QuizId):
    return unwrap(await controller.get_quiz_stats(quiz_id))


@app.post("/api/quiz/{quiz_id}/join")
async def join_quiz(payload: JoinIn, quiz_id: QuizId):
    joined = unwrap(
        await controller.join_quiz(quiz_id, payload.participant_id, payload.display_name, payload.delivery_address)
    )
    connections.bind(quiz_id, payload.participant_id, payload.delivery_address)
    await event_store.append(
        quiz_id,
        "participant_joined",
        participant_id=payload.participant_id,
        display_name=joined.participant.display_name,
        participant_count=joined.session.participant_count,
        reconnected=joined.reconnected,
    )
    return joined


@app.post("/api/quiz/{quiz_id}/start")
async def start_quiz(quiz_id: QuizId):
    summary = unwrap(await controller.start_quiz(quiz_id))
    first = unwrap(await controller.get_current_question(quiz_id))
    await event_store.append(
        quiz_id,
        "quiz_started",
        quiz=summary.model_dump(mode="json"),
        question=first.model_dump(mode="json"),
    )
    return {"quiz": summary, "question": first}


@app.get("/api/quiz/{quiz_id}/question")
async def current_question(quiz_id: QuizId):
    return unwrap(await controller.get_current_question(quiz_id))


@app.post("/api/quiz/{quiz_id}/next")
async def next_question(quiz_id: QuizId):
    view = unwrap(await controller.advance_question(quiz_id))
    if view.question is not None:
        await event_store.append(quiz_id, "question_next", **view.model_dump(mode="json"))
    elif view.just_completed:
        leaderboard = unwrap(await controller.get_full_leaderboard(quiz_id))
        await event_store.append(
            quiz_id,
            "quiz_completed",
            leaderboard=[entry.model_dump(mode="json") for entry in leaderboard],
        )
    return view


@app.post("/api/quiz/{quiz_id}/answer")
async def submit_answer(payload: AnswerIn, quiz_id: QuizId):
    result = unwrap(
        await controller.submit_answer(
            quiz_id, payload.participant_id, payload.question_id, payload.answer, payload.time_taken
        )
    )
    if not result.duplicate:
        await event_store.append(
            quiz_id,
            "score_update",
            participant_id=payload.participant_id,
            score=result.current_score,
            rank=result.rank,
        )
        await _broadcast_leaderboard(quiz_id)
    return result


@app.get("/api/quiz/{quiz_id}/leaderboard")
async def leaderboard(quiz_id: QuizId, limit: int = Query(default=10, ge=1, le=100)):
    return {"leaderboard": unwrap(await controller.get_leaderboard(quiz_id, limit))}


@app.get("/api/quiz/{quiz_id}/leaderboard/full")
async def full_leaderboard(quiz_id: QuizId):
    return {"leaderboard": unwrap(await controller.get_full_leaderboard(quiz_id))}


@app.get("/api/quiz/{quiz_id}/participants")
async def participants(quiz_id: QuizId):
    return {"participants": unwrap(await controller.get_participants(quiz_id))}


@app.delete("/api/connections/{address}")
async def disconnect(address: str):
    connection = connections.unbind(address)
    if connection is None:
        raise HTTPException(status_code=404, detail="Unknown connection")
    await event_store.append(connection.quiz_id, "participant_disconnected", participant_id=connection.participant_id)
    logger.info("Connection %s for %s dropped", address, connection.participant_id)
    return {"ok": True}


@app.get("/api/quiz/{quiz_id}/events")
async def list_events(quiz_id: QuizId, after: Optional[int] = None, limit: int = 200):
    events = await event_store.list(quiz_id, after=after, limit=limit)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}
