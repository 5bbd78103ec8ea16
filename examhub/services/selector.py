"""
Stratified question selection for exam assignments.
"""
import random
from typing import Dict, Iterable, List, Optional, Tuple

from examhub.models.orm import DifficultyLevel
from examhub.models.schemas import DifficultyConfig

TIERS = (DifficultyLevel.EASY, DifficultyLevel.MEDIUM, DifficultyLevel.HARD)

Pool = Dict[DifficultyLevel, List[int]]


def group_by_difficulty(rows: Iterable[Tuple[int, DifficultyLevel]]) -> Pool:
    """Build a selection pool from (question_id, difficulty) pairs, keeping input order."""
    pool: Pool = {tier: [] for tier in TIERS}
    for question_id, difficulty in rows:
        pool[DifficultyLevel(difficulty)].append(question_id)
    return pool


def _requested(requested: DifficultyConfig, tier: DifficultyLevel) -> int:
    return getattr(requested, tier.value)


def select_questions(
    pool: Pool,
    requested: DifficultyConfig,
    rng: Optional[random.Random] = None,
) -> List[int]:
    """
    Draw a random subset of question ids per difficulty tier.

    Each tier yields ``min(requested, available)`` ids without replacement;
    a tier with fewer questions than requested is under-filled silently.
    An all-zero request returns ``[]``, which callers read as "every question".

    Args:
        pool: question ids grouped by tier
        requested: count per tier
        rng: random source, seeded in tests

    Returns:
        Selected ids, easy tier first, then medium, then hard.
    """
    if requested.is_empty():
        return []

    rng = rng or random.Random()
    selected: List[int] = []
    for tier in TIERS:
        want = _requested(requested, tier)
        available = pool.get(tier, [])
        if want <= 0 or not available:
            continue
        shuffled = list(available)
        rng.shuffle(shuffled)
        selected.extend(shuffled[:min(want, len(shuffled))])
    return selected
