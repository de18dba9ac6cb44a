"""
Core data model for the trivia content pipeline.

Topic requests, question records, answers and per-topic batches, plus the
evaluation report handed back to the player at the end of a session.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Difficulty(Enum):
    """Base difficulty chosen by the player."""
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class ContentSource(Enum):
    """Where a topic's question set came from."""
    BUNDLED = "bundled"
    CACHE = "cache"
    TRANSLATION = "translation"
    GENERATION = "generation"
    FALLBACK = "fallback"


SUPPORTED_LANGUAGES = ("en", "ko", "ja", "zh", "es", "fr")
LANGUAGE_NAMES = {
    "en": "English",
    "ko": "Korean",
    "ja": "Japanese",
    "zh": "Chinese",
    "es": "Spanish",
    "fr": "French",
}
MASTER_LANGUAGE = "en"
QUESTIONS_PER_TOPIC = 5
OPTIONS_PER_QUESTION = 4
GENERAL_CATEGORY = "GENERAL"


def make_cache_key(stable_id: str, difficulty: Difficulty, language: str) -> str:
    """Build the storage key for a topic's question set.

    Args:
        stable_id: Language-invariant topic id
        difficulty: Requested base difficulty
        language: Language code of the questions

    Returns:
        Lower-cased "<stable id>_<difficulty>_<language>" key
    """
    return f"{stable_id}_{difficulty.value}_{language}".lower()


def make_dataset_key(stable_id: str, difficulty: Difficulty, language: str) -> str:
    """Key used inside the bundled dataset files (case preserved)."""
    return f"{stable_id}_{difficulty.value}_{language}"


@dataclass(frozen=True)
class TopicRequest:
    """A topic the player asked for, normalized to its stable identity."""
    display_label: str
    stable_id: str
    category_id: str


@dataclass
class QuestionRecord:
    """A multiple-choice question. Ids are shared across translations."""
    id: int
    prompt: str
    options: list[str]
    correct_option: str
    explanation: str = ""

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        data = {
            "id": self.id,
            "prompt": self.prompt,
            "options": list(self.options),
            "correct_option": self.correct_option,
        }
        if self.explanation:
            data["explanation"] = self.explanation
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionRecord":
        """Deserialize from dictionary (no validation, see question_decoder)."""
        return cls(
            id=int(data["id"]),
            prompt=data["prompt"],
            options=list(data["options"]),
            correct_option=data["correct_option"],
            explanation=data.get("explanation") or "",
        )


@dataclass
class QuizSet:
    """Five questions resolved for one requested topic."""
    topic: TopicRequest
    questions: list[QuestionRecord]
    source: ContentSource


@dataclass
class Answer:
    """The player's answer to a single question."""
    question_id: int
    prompt: str
    selected_option: str
    correct_option: str
    is_correct: bool
    explanation: str = ""

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "question_id": self.question_id,
            "prompt": self.prompt,
            "selected_option": self.selected_option,
            "correct_option": self.correct_option,
            "is_correct": self.is_correct,
            "explanation": self.explanation,
        }


@dataclass
class Batch:
    """All answers for one topic within a session."""
    topic_label: str
    category_id: str
    answers: list[Answer] = field(default_factory=list)

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers if a.is_correct)


@dataclass
class QuestionReview:
    """Commentary for one answered question."""
    question_id: int
    is_correct: bool
    commentary: str
    fact_check: str
    prompt: str = ""
    selected_option: str = ""
    correct_option: str = ""

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "question_id": self.question_id,
            "is_correct": self.is_correct,
            "commentary": self.commentary,
            "fact_check": self.fact_check,
            "prompt": self.prompt,
            "selected_option": self.selected_option,
            "correct_option": self.correct_option,
        }


@dataclass
class EvaluationResult:
    """End-of-session report for one topic."""
    topic_id: str
    title: str
    total_score: int
    human_percentile: int
    demographic_percentile: int
    narrative_comparison: str
    per_question: list[QuestionReview] = field(default_factory=list)
    demographic_comment: str = ""
    ai_score: Optional[int] = None

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "topic_id": self.topic_id,
            "title": self.title,
            "total_score": self.total_score,
            "human_percentile": self.human_percentile,
            "demographic_percentile": self.demographic_percentile,
            "narrative_comparison": self.narrative_comparison,
            "demographic_comment": self.demographic_comment,
            "ai_score": self.ai_score,
            "per_question": [r.to_dict() for r in self.per_question],
        }
