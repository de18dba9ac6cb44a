"""
Rating Updater: folds completed batches into the player's profile.

Score bands drive a fixed rating delta; ratings never go below zero.
Every answered question is marked seen, whether or not it was answered
correctly.
"""
import time
from typing import Callable, Optional

from quiz_models import Batch, Difficulty
from rating_store import HistoryEntry, RatingProfile

AI_BENCHMARKS = {
    Difficulty.EASY: 92,
    Difficulty.MEDIUM: 95,
    Difficulty.HARD: 98,
}

# (minimum score, delta), checked top-down
RATING_BANDS = [
    (80, 30),
    (60, 10),
    (40, -10),
]
LOWEST_BAND_DELTA = -20


def score_batch(batch: Batch) -> int:
    """Percentage of correct answers, rounded (0 for an empty batch)."""
    if not batch.answers:
        return 0
    return round(batch.correct_count / len(batch.answers) * 100)


def rating_delta(score: int) -> int:
    for minimum, delta in RATING_BANDS:
        if score >= minimum:
            return delta
    return LOWEST_BAND_DELTA


def apply_rating(old_rating: int, delta: int) -> int:
    return max(0, old_rating + delta)


def ai_benchmark(difficulty: Difficulty) -> int:
    return AI_BENCHMARKS[difficulty]


def update_profile(
    profile: RatingProfile,
    batches: list[Batch],
    difficulty: Difficulty,
    clock: Optional[Callable[[], float]] = None,
) -> RatingProfile:
    """Apply a finished session to a profile.

    Args:
        profile: Profile before the session (left unchanged)
        batches: Closed batches, one per topic
        difficulty: Base difficulty the session was played at
        clock: Timestamp source, time.time by default

    Returns:
        New profile with updated ratings, seen ids, history and best scores
    """
    clock = clock or time.time
    updated = profile.copy()
    benchmark = ai_benchmark(difficulty)

    for batch in batches:
        score = score_batch(batch)
        old = updated.rating_for(batch.category_id)
        updated.ratings[batch.category_id] = apply_rating(old, rating_delta(score))

        updated.seen_question_ids.update(a.question_id for a in batch.answers)

        timestamp = clock()
        if updated.history and timestamp < updated.history[-1].timestamp:
            timestamp = updated.history[-1].timestamp
        updated.history.append(HistoryEntry(
            timestamp=timestamp,
            category_id=batch.category_id,
            score=score,
            ai_benchmark=benchmark,
            difficulty=difficulty,
        ))

        if score > updated.best_scores.get(batch.topic_label, -1):
            updated.best_scores[batch.topic_label] = score

    return updated
