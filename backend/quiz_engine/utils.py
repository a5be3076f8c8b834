import random
import string
import time
from datetime import datetime, timezone
from typing import Optional

QUIZ_ID_ALPHABET = string.ascii_uppercase + string.digits
QUIZ_ID_LENGTH = 6


def now_ts() -> float:
    return time.time()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_quiz_id(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(QUIZ_ID_ALPHABET) for _ in range(QUIZ_ID_LENGTH))
