"""Scoring for exam and quiz attempts.

Functions:
- score: single-selection scoring, full points when the chosen answer is correct.
- score_selections: multi-selection scoring, full points only for an exact match.
- total_points / normalize / percentage: read-side helpers.
"""
from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, Iterable, Mapping, Optional

@dataclass(frozen=True)
class ScoredQuestion:
    question_id: int
    points: float
    correct_answer_ids: FrozenSet[int]

    @classmethod
    def from_question(cls, question) -> "ScoredQuestion":
        """Build from an ORM Question with its answers loaded."""
        return cls(
            question_id=question.id,
            points=float(question.points),
            correct_answer_ids=frozenset(a.id for a in question.answers if a.is_correct),
        )

def score(questions: Iterable[ScoredQuestion], answer_map: Mapping[int, Optional[int]]) -> float:
    """Sum the points of every question whose selected answer is correct.

    Unanswered and wrong questions both contribute 0; there is no negative marking.
    """
    total = 0.0
    for q in questions:
        selected = answer_map.get(q.question_id)
        if selected is not None and selected in q.correct_answer_ids:
            total += q.points
    return total

def score_selections(questions: Iterable[ScoredQuestion], selections: Mapping[int, AbstractSet[int]]) -> float:
    """Award a question's points only when the selected set equals its correct set."""
    total = 0.0
    for q in questions:
        chosen = set(selections.get(q.question_id, ()))
        if chosen and chosen == set(q.correct_answer_ids):
            total += q.points
    return total

def total_points(questions: Iterable[ScoredQuestion]) -> float:
    return sum(q.points for q in questions)

def normalize(earned: float, possible: float, scale: float = 10.0) -> float:
    """Score rescaled to ``scale`` (10 by default), rounded to two decimals."""
    if possible <= 0:
        return 0.0
    return round(earned / possible * scale, 2)

def percentage(earned: float, possible: float) -> int:
    if possible <= 0:
        return 0
    return round(earned / possible * 100)
