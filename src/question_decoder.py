"""
Validated decoding of question JSON coming from outside the process.

Generated, translated and cached question sets are never trusted as-is:
each record is checked against the question invariants (non-empty prompt,
four unique options, correct option among them) before it becomes a
QuestionRecord. Bad records are dropped; a set that ends up too small is
reported as a failed DecodeResult rather than raised.
"""
import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from quiz_models import OPTIONS_PER_QUESTION, QuestionRecord

# Generated ids live above the hand-authored id range.
GENERATED_ID_FLOOR = 1_000_000
GENERATED_ID_SPAN = 2**31 - 1 - GENERATED_ID_FLOOR

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")


class DecodeError(Exception):
    """External JSON did not satisfy the question invariants."""


class QuestionPayload(BaseModel):
    """Wire shape of a question; accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    prompt: str = Field(validation_alias=AliasChoices("prompt", "question"))
    options: list[str]
    correct_option: str = Field(validation_alias=AliasChoices("correct_option", "correctAnswer"))
    explanation: Optional[str] = Field(default=None, validation_alias=AliasChoices("explanation", "context"))

    @field_validator("prompt", "correct_option")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("options")
    @classmethod
    def _four_unique_options(cls, value: list[str]) -> list[str]:
        options = [o.strip() for o in value]
        if len(options) != OPTIONS_PER_QUESTION:
            raise ValueError(f"expected {OPTIONS_PER_QUESTION} options, got {len(options)}")
        if any(not o for o in options):
            raise ValueError("options must not be blank")
        if len(set(options)) != len(options):
            raise ValueError("options must be unique")
        return options

    @model_validator(mode="after")
    def _correct_option_listed(self) -> "QuestionPayload":
        if self.correct_option not in self.options:
            raise ValueError("correct_option does not match any option")
        return self


@dataclass
class DecodeResult:
    """Outcome of decoding one question set."""
    questions: list[QuestionRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def extract_json(text: Optional[str]) -> str:
    """Pull the JSON object or array out of a model reply (drops code fences)."""
    if not text:
        return ""
    match = _JSON_BLOCK.search(text)
    return match.group(0) if match else text.strip()


def parse_json_text(text: Optional[str]) -> Any:
    """Parse a model reply as JSON.

    Raises:
        ValueError: If no JSON can be parsed from the text
    """
    cleaned = extract_json(text)
    if not cleaned:
        raise ValueError("empty response")
    return json.loads(cleaned)


def stable_question_id(stable_id: str, prompt: str) -> int:
    """Deterministic id for a generated question, from its topic and prompt."""
    msg = "|".join([(stable_id or "").strip().lower(), (prompt or "").strip().lower()])
    digest = hashlib.sha256(msg.encode("utf-8")).digest()
    return GENERATED_ID_FLOOR + int.from_bytes(digest[:4], "big") % GENERATED_ID_SPAN


def decode_question(raw: Any, stable_id: str = "", derive_id: bool = False) -> QuestionRecord:
    """Validate a single raw question.

    Args:
        raw: Parsed JSON value for one question
        stable_id: Topic id, used to derive an id when none is supplied
        derive_id: Ignore any supplied id and always derive one. Used for
            freshly generated questions, whose model-chosen ids are not
            unique across topics.

    Returns:
        QuestionRecord

    Raises:
        DecodeError: If the record breaks a question invariant
    """
    try:
        payload = QuestionPayload.model_validate(raw)
    except ValidationError as e:
        raise DecodeError(str(e)) from e

    if derive_id or payload.id is None:
        question_id = stable_question_id(stable_id, payload.prompt)
    else:
        question_id = payload.id
    return QuestionRecord(
        id=question_id,
        prompt=payload.prompt,
        options=payload.options,
        correct_option=payload.correct_option,
        explanation=(payload.explanation or "").strip(),
    )


def decode_question_list(
    raw: Any,
    stable_id: str = "",
    minimum: int = 0,
    derive_ids: bool = False,
) -> DecodeResult:
    """Validate a list of raw questions, dropping invalid or duplicate ones.

    Args:
        raw: Parsed JSON value expected to be a list
        stable_id: Topic id, used to derive missing ids
        minimum: Fewest valid questions for the result to count as ok
        derive_ids: Derive every id from topic and prompt (see decode_question)

    Returns:
        DecodeResult with the valid questions; error set when the list is
        not a list or holds fewer than `minimum` valid questions
    """
    if not isinstance(raw, list):
        return DecodeResult(error=f"expected a list of questions, got {type(raw).__name__}")

    questions = []
    seen_ids = set()
    for item in raw:
        try:
            question = decode_question(item, stable_id, derive_ids)
        except DecodeError:
            continue
        if question.id in seen_ids:
            continue
        seen_ids.add(question.id)
        questions.append(question)

    if len(questions) < minimum:
        return DecodeResult(
            questions=questions,
            error=f"only {len(questions)} valid questions (need {minimum})",
        )
    return DecodeResult(questions=questions)


def decode_topic_map(raw: Any, stable_ids: list[str], minimum: int = 0) -> dict[str, DecodeResult]:
    """Decode a {stable_id: [question, ...]} generation response.

    Every requested id gets a DecodeResult; ids missing from the response
    come back as failures. Question ids are always derived from topic and
    prompt.
    """
    if not isinstance(raw, dict):
        error = f"expected an object keyed by topic, got {type(raw).__name__}"
        return {sid: DecodeResult(error=error) for sid in stable_ids}

    results = {}
    for sid in stable_ids:
        if sid not in raw:
            results[sid] = DecodeResult(error="topic missing from response")
        else:
            results[sid] = decode_question_list(raw[sid], sid, minimum, derive_ids=True)
    return results
