"""
Rating Store: per-player skill ratings, seen questions and play history.

The profile is plain data; the Rating Updater is the only code that
produces a changed profile, and ProfileStore persists it between sessions.
Also holds the rating-to-label helpers (adaptive level, tiers).
"""
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import config
from json_store import read_json, write_json_locked
from quiz_models import Difficulty

logger = logging.getLogger(__name__)

DEFAULT_RATING = 1000


class Tier(Enum):
    """Display tier for a rating."""
    UNRANKED = "UNRANKED"
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"
    DIAMOND = "DIAMOND"
    MASTER = "MASTER"


# (exclusive upper bound, tier)
TIER_BOUNDS = [
    (800, Tier.UNRANKED),
    (1000, Tier.BRONZE),
    (1300, Tier.SILVER),
    (1600, Tier.GOLD),
    (1900, Tier.PLATINUM),
    (2200, Tier.DIAMOND),
]
MASTER_CAP = 3000

# (exclusive upper bound, label) passed to the generator as context
ADAPTIVE_LEVELS = [
    (800, "Beginner"),
    (1200, "Intermediate"),
    (1600, "Advanced"),
]
TOP_ADAPTIVE_LEVEL = "Expert"


@dataclass
class HistoryEntry:
    """One completed topic, appended after every session."""
    timestamp: float
    category_id: str
    score: int
    ai_benchmark: int
    difficulty: Difficulty

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "timestamp": self.timestamp,
            "category_id": self.category_id,
            "score": self.score,
            "ai_benchmark": self.ai_benchmark,
            "difficulty": self.difficulty.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        """Deserialize from dictionary."""
        return cls(
            timestamp=float(data["timestamp"]),
            category_id=data["category_id"],
            score=int(data["score"]),
            ai_benchmark=int(data["ai_benchmark"]),
            difficulty=Difficulty(data["difficulty"]),
        )


@dataclass
class RatingProfile:
    """A player's demographic context and adaptive state."""
    gender: str = ""
    age_group: str = ""
    nationality: str = ""
    ratings: dict[str, int] = field(default_factory=dict)
    seen_question_ids: set[int] = field(default_factory=set)
    history: list[HistoryEntry] = field(default_factory=list)
    best_scores: dict[str, int] = field(default_factory=dict)

    def rating_for(self, category_id: str) -> int:
        """Current rating for a category (DEFAULT_RATING if never played)."""
        return self.ratings.get(category_id, DEFAULT_RATING)

    def copy(self) -> "RatingProfile":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "gender": self.gender,
            "age_group": self.age_group,
            "nationality": self.nationality,
            "ratings": dict(self.ratings),
            "seen_question_ids": sorted(self.seen_question_ids),
            "history": [h.to_dict() for h in self.history],
            "best_scores": dict(self.best_scores),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RatingProfile":
        """Deserialize from dictionary, tolerating missing fields."""
        history = [HistoryEntry.from_dict(h) for h in data.get("history") or []]
        history.sort(key=lambda h: h.timestamp)
        return cls(
            gender=data.get("gender") or "",
            age_group=data.get("age_group") or "",
            nationality=data.get("nationality") or "",
            ratings={k: max(0, int(v)) for k, v in (data.get("ratings") or {}).items()},
            seen_question_ids={int(i) for i in data.get("seen_question_ids") or []},
            history=history,
            best_scores={k: int(v) for k, v in (data.get("best_scores") or {}).items()},
        )


def adaptive_level(rating: int) -> str:
    """Coarse difficulty label for a rating, used as generation context."""
    for bound, label in ADAPTIVE_LEVELS:
        if rating < bound:
            return label
    return TOP_ADAPTIVE_LEVEL


def tier_for_rating(rating: int) -> Tier:
    """Display tier for a rating."""
    for bound, tier in TIER_BOUNDS:
        if rating < bound:
            return tier
    return Tier.MASTER


def next_tier_threshold(rating: int) -> int:
    """Rating needed to reach the next tier (MASTER_CAP once at the top)."""
    for bound, _ in TIER_BOUNDS:
        if rating < bound:
            return bound
    return MASTER_CAP


def aggregate_rating(profile: RatingProfile) -> int:
    """Rounded mean over all played categories."""
    if not profile.ratings:
        return DEFAULT_RATING
    values = list(profile.ratings.values())
    return round(sum(values) / len(values))


class ProfileStore:
    """JSON-file persistence for a single RatingProfile."""

    def __init__(self, path: Path = config.PROFILE_PATH):
        self.path = Path(path)

    def load(self) -> RatingProfile:
        """Load the stored profile, or a fresh one if missing or corrupt."""
        data = read_json(self.path)
        if not isinstance(data, dict):
            return RatingProfile()
        try:
            return RatingProfile.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Profile at %s is corrupt, starting fresh", self.path)
            return RatingProfile()

    def save(self, profile: RatingProfile) -> None:
        """Persist the profile. OSError propagates to the caller."""
        write_json_locked(self.path, profile.to_dict())

    def reset(self) -> None:
        """Delete the stored profile."""
        if self.path.exists():
            self.path.unlink()

