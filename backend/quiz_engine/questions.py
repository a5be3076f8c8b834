from __future__ import annotations

import math
import random
from typing import Dict, List, Optional, Sequence

from .models import Difficulty, Question

# Target share of a quiz per tier; hard takes whatever is left.
EASY_SHARE = 0.4
MEDIUM_SHARE = 0.4

QUESTION_BANK: List[Question] = [
    Question(id="q1", text='What does "happy" mean?', options=["Sad", "Joyful", "Angry", "Tired"],
             correct_answer="Joyful", difficulty="easy", category="emotions", points=10),
    Question(id="q2", text='Choose the synonym of "big"?', options=["Small", "Large", "Tiny", "Little"],
             correct_answer="Large", difficulty="easy", category="adjectives", points=10),
    Question(id="q3", text='What is the opposite of "hot"?', options=["Warm", "Cold", "Cool", "Freezing"],
             correct_answer="Cold", difficulty="easy", category="antonyms", points=10),
    Question(id="q4", text='What does "eat" mean?', options=["To drink", "To sleep", "To consume food", "To run"],
             correct_answer="To consume food", difficulty="easy", category="verbs", points=10),
    Question(id="q5", text="Choose the correct spelling:", options=["Freind", "Friend", "Frend", "Friand"],
             correct_answer="Friend", difficulty="easy", category="spelling", points=10),
    Question(id="q6", text='What does "ambitious" mean?',
             options=["Lazy and unmotivated", "Having strong desire to succeed", "Feeling tired", "Being friendly"],
             correct_answer="Having strong desire to succeed", difficulty="medium", category="adjectives", points=15),
    Question(id="q7", text='Choose the synonym of "demonstrate"?', options=["Hide", "Show", "Forget", "Ignore"],
             correct_answer="Show", difficulty="medium", category="verbs", points=15),
    Question(id="q8", text='What does "reluctant" mean?', options=["Very eager", "Unwilling", "Happy", "Excited"],
             correct_answer="Unwilling", difficulty="medium", category="adjectives", points=15),
    Question(id="q9", text='Choose the word that best completes: "The evidence was ___ enough to convince the jury."',
             options=["Compelling", "Boring", "Weak", "Funny"],
             correct_answer="Compelling", difficulty="medium", category="context", points=15),
    Question(id="q10", text='What is the meaning of "procrastinate"?',
             options=["To work quickly", "To delay or postpone", "To celebrate", "To organize"],
             correct_answer="To delay or postpone", difficulty="medium", category="verbs", points=15),
    Question(id="q11", text='What does "ephemeral" mean?',
             options=["Lasting for a very short time", "Eternal and everlasting", "Heavy and solid", "Brightly colored"],
             correct_answer="Lasting for a very short time", difficulty="hard", category="advanced", points=20),
    Question(id="q12", text='Choose the synonym of "ubiquitous"?', options=["Rare", "Omnipresent", "Ancient", "Modern"],
             correct_answer="Omnipresent", difficulty="hard", category="advanced", points=20),
    Question(id="q13", text='What does "esoteric" mean?',
             options=["Common and ordinary", "Understood by few; specialized", "Very expensive", "Extremely large"],
             correct_answer="Understood by few; specialized", difficulty="hard", category="advanced", points=20),
    Question(id="q14", text='Choose the correct usage of "ameliorate"?',
             options=["To make worse", "To make better", "To describe", "To remember"],
             correct_answer="To make better", difficulty="hard", category="verbs", points=20),
    Question(id="q15", text='What is the meaning of "sycophant"?',
             options=["A brave leader", "A person who flatters to gain advantage", "A talented artist", "An honest critic"],
             correct_answer="A person who flatters to gain advantage", difficulty="hard", category="nouns", points=20),
    Question(id="q16", text='What does "perspicacious" mean?',
             options=["Confused and unclear", "Having keen insight", "Very tall", "Extremely wealthy"],
             correct_answer="Having keen insight", difficulty="hard", category="advanced", points=20),
    Question(id="q17", text='Choose the synonym of "obfuscate"?', options=["Clarify", "Confuse", "Simplify", "Explain"],
             correct_answer="Confuse", difficulty="hard", category="verbs", points=20),
    Question(id="q18", text='What does "magnanimous" mean?',
             options=["Selfish and greedy", "Generous and forgiving", "Angry and bitter", "Shy and quiet"],
             correct_answer="Generous and forgiving", difficulty="hard", category="adjectives", points=20),
    Question(id="q19", text='What is a "panacea"?',
             options=["A solution for all problems", "A type of disease", "A small amount", "A religious ceremony"],
             correct_answer="A solution for all problems", difficulty="hard", category="nouns", points=20),
    Question(id="q20", text='What does "recalcitrant" mean?',
             options=["Obedient and compliant", "Stubbornly resistant to authority", "Very intelligent", "Extremely fast"],
             correct_answer="Stubbornly resistant to authority", difficulty="hard", category="adjectives", points=20),
]


def tier_counts(count: int) -> Dict[str, int]:
    easy = math.ceil(count * EASY_SHARE)
    medium = min(math.ceil(count * MEDIUM_SHARE), count - easy)
    return {"easy": easy, "medium": medium, "hard": count - easy - medium}


def normalize_answer(answer: str) -> str:
    return answer.strip().lower()


class QuestionBank:
    """Read-only question content with selection helpers."""

    def __init__(self, questions: Optional[Sequence[Question]] = None):
        self._questions: List[Question] = list(QUESTION_BANK if questions is None else questions)

    def all_questions(self) -> List[Question]:
        return list(self._questions)

    def questions_by_difficulty(self, difficulty: Difficulty) -> List[Question]:
        return [q for q in self._questions if q.difficulty == difficulty]

    def question_by_id(self, question_id: str) -> Optional[Question]:
        return next((q for q in self._questions if q.id == question_id), None)

    def balanced_questions(self, count: int, rng: Optional[random.Random] = None) -> List[Question]:
        """Stratified sample of ``count`` questions: 40% easy, 40% medium, 20% hard.

        A tier with fewer questions than its target contributes all it has, so
        the result may be shorter than ``count``.
        """
        rng = rng or random.Random()
        selected: List[Question] = []
        for difficulty, wanted in tier_counts(max(0, count)).items():
            pool = self.questions_by_difficulty(difficulty)
            rng.shuffle(pool)
            selected.extend(pool[:wanted])
        rng.shuffle(selected)
        return selected

    @staticmethod
    def validate_answer(question: Question, answer: str) -> bool:
        return normalize_answer(question.correct_answer) == normalize_answer(answer)

    def stats(self) -> Dict[str, object]:
        return {
            "total": len(self._questions),
            "by_difficulty": {d: len(self.questions_by_difficulty(d)) for d in ("easy", "medium", "hard")},
            "categories": sorted({q.category for q in self._questions}),
        }
