from pydantic import BaseModel, Field
from typing import Optional

QUIZ_ID_PATTERN = r"^[A-Z0-9]{6}$"


class CreateQuizIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    question_count: Optional[int] = Field(default=None, ge=1, le=50)
    max_participants: Optional[int] = Field(default=None, ge=1)


class JoinIn(BaseModel):
    participant_id: str = Field(min_length=1, max_length=128)
    display_name: str = Field(min_length=2, max_length=30)
    delivery_address: str = Field(min_length=1, max_length=256)


class AnswerIn(BaseModel):
    participant_id: str = Field(min_length=1, max_length=128)
    question_id: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    time_taken: float = Field(ge=0, allow_inf_nan=False)
