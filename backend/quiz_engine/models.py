from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .utils import utcnow

Difficulty = Literal["easy", "medium", "hard"]


class QuizStatus(str, Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Question(BaseModel):
    id: str
    text: str
    options: List[str]
    correct_answer: str
    difficulty: Difficulty
    category: str
    points: int

    def sanitized(self) -> "Question":
        """Copy safe to hand to participants: the correct answer is blanked."""
        return self.model_copy(update={"correct_answer": ""})


# States: waiting -> in_progress -> completed
class QuizSession(BaseModel):
    quiz_id: str
    title: str
    status: QuizStatus = QuizStatus.WAITING
    questions: List[Question] = Field(default_factory=list)
    current_question_index: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    max_participants: int = 100


class Participant(BaseModel):
    participant_id: str
    display_name: str
    delivery_address: str
    score: int = 0
    answers_submitted: int = 0
    joined_at: datetime = Field(default_factory=utcnow)


class AnswerRecord(BaseModel):
    answer: str
    correct: bool
    correct_answer: str
    earned_points: int
    time_taken: float
    submitted_at: datetime = Field(default_factory=utcnow)


class AnswerResult(BaseModel):
    question_id: str
    correct: bool
    correct_answer: str
    earned_points: int
    current_score: int
    rank: int
    duplicate: bool = False


class LeaderboardEntry(BaseModel):
    participant_id: str
    display_name: str
    score: int
    rank: int
    correct_answers: Optional[int] = None
    total_answers: Optional[int] = None


class SessionSummary(BaseModel):
    quiz_id: str
    title: str
    status: QuizStatus
    question_count: int
    current_question: int
    participant_count: int
    max_participants: int
    created_at: datetime
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class JoinResult(BaseModel):
    session: SessionSummary
    participant: Participant
    reconnected: bool = False


class QuestionView(BaseModel):
    """What participants should see now; ``question`` is None once the quiz is over."""

    question: Optional[Question] = None
    question_number: int
    total_questions: int
    completed: bool = False
    just_completed: bool = False


class QuizStats(BaseModel):
    session: SessionSummary
    top_players: List[LeaderboardEntry] = Field(default_factory=list)
