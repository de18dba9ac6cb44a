"""
End-of-session evaluation.

The AI path sends every closed batch in one request and merges the
per-question analysis back onto the player's actual answers. The
heuristic path needs no service: score-banded narrative plus templated
per-question commentary, chosen deterministically so the same session
always yields the same report.
"""
import logging
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from generation_client import GenerationClient
from quiz_models import (
    LANGUAGE_NAMES,
    Answer,
    Batch,
    Difficulty,
    EvaluationResult,
    QuestionReview,
)
from rating_store import RatingProfile
from rating_updater import ai_benchmark, score_batch

logger = logging.getLogger(__name__)

MAX_PERCENTILE = 99

GENERIC_TEMPLATES = {
    "en": {
        "correct": [
            "Logic verified. {context}",
            "Precisely. {context}",
            "Cognitive match confirmed. Indeed, {context}",
            "Optimal path selected. Note that {context}",
            "Affirmative. {context}",
        ],
        "wrong": [
            "Error detected. {context}",
            "Illogical selection. The reality is: {context}",
            "You chose '{selection}', which is incorrect. {context}",
            "Divergence from fact. {context}",
            "Incorrect. The answer was '{answer}'. {context}",
        ],
    },
    "ko": {
        "correct": [
            "논리 검증됨. {context}",
            "정확합니다. {context}",
            "인지 패턴 일치. 실제로 {context}",
            "최적의 경로입니다. 참고로, {context}",
            "긍정적 결과. {context}",
        ],
        "wrong": [
            "오류 감지됨. {context}",
            "비논리적 선택입니다. 진실은: {context}",
            "'{selection}'을(를) 선택했군요. 틀렸습니다. {context}",
            "팩트와의 괴리 발생. {context}",
            "오답입니다. 정답은 '{answer}'. {context}",
        ],
    },
    "ja": {
        "correct": ["論理検証完了。 {context}", "正解です。 {context}", "その通り。 {context}"],
        "wrong": ["エラー検出。 {context}", "不正解です。事実は: {context}", "'{selection}'ではありません。 {context}"],
    },
    "zh": {
        "correct": ["逻辑已验证。 {context}", "正是如此。 {context}"],
        "wrong": ["检测到错误。 {context}", "选择不合逻辑。事实是：{context}"],
    },
    "es": {
        "correct": ["Lógica verificada. {context}", "Exacto. {context}"],
        "wrong": ["Error detectado. {context}", "Incorrecto. {context}"],
    },
    "fr": {
        "correct": ["Logique vérifiée. {context}", "Précisément. {context}"],
        "wrong": ["Erreur détectée. {context}", "Incorrect. {context}"],
    },
}

# Category-specific templates, tried ahead of the generic ones
CATEGORY_FLAVORS = {
    "SCIENCE": {
        "en": {
            "correct": ["Hypothesis confirmed. {context}", "Scientific consensus aligns. {context}"],
            "wrong": ["Hypothesis rejected. {context}", "Empirical data suggests otherwise. {context}"],
        },
        "ko": {
            "correct": ["가설 확인됨. {context}", "과학적 합의와 일치합니다. {context}"],
            "wrong": ["가설 기각됨. {context}", "실증 데이터는 다른 것을 시사합니다. {context}"],
        },
    },
    "HISTORY": {
        "en": {
            "correct": ["Historical record matched. {context}", "Timeline synchronized. {context}"],
            "wrong": ["Anachronism detected. {context}", "Historical inaccuracy. {context}"],
        },
        "ko": {
            "correct": ["역사적 기록 일치. {context}", "타임라인 동기화됨. {context}"],
            "wrong": ["시대착오적 오류 감지. {context}", "역사적 사실과 다릅니다. {context}"],
        },
    },
}

BAND_COMMENTS = {
    "en": {
        "perfect": ["Perfect score.", "Flawless."],
        "high": ["High proficiency.", "Impressive."],
        "mid": ["Average performance.", "Acceptable."],
        "low": ["Suboptimal.", "Needs improvement."],
    },
    "ko": {
        "perfect": ["만점입니다.", "완벽합니다."],
        "high": ["높은 숙련도.", "인상적입니다."],
        "mid": ["평균적인 성과.", "무난합니다."],
        "low": ["최적이 아닙니다.", "개선이 필요합니다."],
    },
}

MESSAGES = {
    "en": {
        "no_data": "No data.",
        "local_analysis": "Local analysis used due to server load.",
        "analysis_unavailable": "Analysis unavailable",
    },
    "ko": {
        "no_data": "데이터 없음.",
        "local_analysis": "서버 부하로 인해 로컬 분석으로 대체되었습니다.",
        "analysis_unavailable": "분석 데이터 없음",
    },
}
NOT_AVAILABLE = "N/A"

EVALUATION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "results": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "humanPercentile": {"type": "INTEGER"},
                    "demographicPercentile": {"type": "INTEGER"},
                    "demographicComment": {"type": "STRING"},
                    "aiComparison": {"type": "STRING"},
                    "title": {"type": "STRING"},
                    "details": {
                        "type": "ARRAY",
                        "items": {
                            "type": "OBJECT",
                            "properties": {
                                "questionId": {"type": "INTEGER"},
                                "isCorrect": {"type": "BOOLEAN"},
                                "aiComment": {"type": "STRING"},
                                "correctFact": {"type": "STRING"},
                            },
                        },
                    },
                },
            },
        },
    },
    "required": ["results"],
}


class EvaluationError(Exception):
    """The evaluation reply could not be used."""


class DetailPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question_id: int = Field(validation_alias=AliasChoices("questionId", "question_id"))
    ai_comment: str = Field(default="", validation_alias=AliasChoices("aiComment", "ai_comment"))
    correct_fact: str = Field(default="", validation_alias=AliasChoices("correctFact", "correct_fact"))


class TopicReportPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    human_percentile: int = Field(validation_alias=AliasChoices("humanPercentile", "human_percentile"))
    demographic_percentile: int = Field(
        validation_alias=AliasChoices("demographicPercentile", "demographic_percentile")
    )
    demographic_comment: str = Field(
        default="", validation_alias=AliasChoices("demographicComment", "demographic_comment")
    )
    ai_comparison: str = Field(default="", validation_alias=AliasChoices("aiComparison", "ai_comparison"))
    title: str = ""
    details: list[DetailPayload] = Field(default_factory=list)


class EvaluationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[TopicReportPayload]


def _localized(table: dict, language: str) -> dict:
    return table.get(language) or table["en"]


def clamp_percentile(value: int) -> int:
    return max(0, min(MAX_PERCENTILE, int(value)))


def score_band(score: int) -> str:
    if score >= 100:
        return "perfect"
    if score >= 70:
        return "high"
    if score >= 40:
        return "mid"
    return "low"


def smart_comment(answer: Answer, language: str, category_id: str) -> str:
    """Templated commentary for one answer, chosen by question id.

    Args:
        answer: The recorded answer
        language: Output language
        category_id: Category, for flavoured templates

    Returns:
        Comment with {context}, {answer} and {selection} filled in
    """
    kind = "correct" if answer.is_correct else "wrong"
    flavor = CATEGORY_FLAVORS.get(category_id, {}).get(language, {}).get(kind, [])
    templates = flavor + _localized(GENERIC_TEMPLATES, language)[kind]
    template = templates[answer.question_id % len(templates)]

    context = answer.explanation or _localized(MESSAGES, language)["no_data"]
    return (
        template.replace("{context}", context)
        .replace("{answer}", answer.correct_option)
        .replace("{selection}", answer.selected_option)
    )


def heuristic_evaluation(batches: list[Batch], language: str, difficulty: Difficulty) -> list[EvaluationResult]:
    """Evaluate batches locally, without the service.

    Percentiles mirror the score; every output depends only on the input.
    """
    messages = _localized(MESSAGES, language)
    bands = _localized(BAND_COMMENTS, language)
    results = []
    for batch in batches:
        score = score_batch(batch)
        band = bands[score_band(score)]
        narrative = band[sum(a.question_id for a in batch.answers) % len(band)]
        results.append(EvaluationResult(
            topic_id=batch.category_id,
            title=batch.topic_label,
            total_score=score,
            human_percentile=clamp_percentile(score),
            demographic_percentile=clamp_percentile(score),
            narrative_comparison=narrative,
            demographic_comment=messages["local_analysis"],
            ai_score=ai_benchmark(difficulty),
            per_question=[
                QuestionReview(
                    question_id=a.question_id,
                    is_correct=a.is_correct,
                    commentary=smart_comment(a, language, batch.category_id),
                    fact_check=a.explanation or NOT_AVAILABLE,
                    prompt=a.prompt,
                    selected_option=a.selected_option,
                    correct_option=a.correct_option,
                )
                for a in batch.answers
            ],
        ))
    return results


def build_evaluation_prompt(batches: list[Batch], profile: RatingProfile, language: str) -> str:
    summaries = []
    for batch in batches:
        lines = [f'Topic: "{batch.topic_label}" (Score: {score_batch(batch)}/100)']
        for a in batch.answers:
            lines.append(
                f'- Q{a.question_id}: "{a.prompt}"\n'
                f'  User Selected: "{a.selected_option}"\n'
                f'  Correct Answer: "{a.correct_option}"\n'
                f"  Result: {'Correct' if a.is_correct else 'Incorrect'}"
            )
        summaries.append("\n".join(lines))

    return (
        "You are an AI analyst evaluating human intelligence.\n"
        "Analyze the user's performance across multiple topics and write a separate report for EACH topic.\n"
        "\n"
        f"User Context: Age {profile.age_group or 'unknown'}, Nationality {profile.nationality or 'unknown'}.\n"
        f"Language: {LANGUAGE_NAMES.get(language, language)} (return ALL text in this language).\n"
        "\n"
        "Input Data:\n"
        + "\n\n".join(summaries)
        + "\n\nREQUIREMENTS:\n"
        '1. Return a JSON object containing an array "results", one item per input topic, in order.\n'
        '2. "details" holds one analysis per question; include "questionId" to match the input.\n'
        '3. "aiComparison" and "demographicComment" compare the user against an AI opponent.\n'
    )


class Evaluator:
    """Produces one EvaluationResult per batch via the generation service."""

    def __init__(self, client: GenerationClient):
        self.client = client

    async def evaluate(
        self,
        batches: list[Batch],
        profile: RatingProfile,
        language: str,
        difficulty: Difficulty,
    ) -> list[EvaluationResult]:
        """Ask the service for a report on every batch.

        Raises:
            GenerationError: The service call failed
            EvaluationError: The reply is invalid or does not match the batches
        """
        if not batches:
            return []

        raw = await self.client.generate(build_evaluation_prompt(batches, profile, language), EVALUATION_SCHEMA)
        try:
            payload = EvaluationPayload.model_validate(raw)
        except ValidationError as e:
            raise EvaluationError(f"Invalid evaluation reply: {e}") from e
        if len(payload.results) != len(batches):
            raise EvaluationError(
                f"Evaluation returned {len(payload.results)} reports for {len(batches)} topics"
            )

        messages = _localized(MESSAGES, language)
        return [
            self._merge(batch, report, messages, difficulty)
            for batch, report in zip(batches, payload.results)
        ]

    def _merge(
        self,
        batch: Batch,
        report: TopicReportPayload,
        messages: dict,
        difficulty: Difficulty,
    ) -> EvaluationResult:
        """Attach the AI analysis to the answers actually given."""
        details = {d.question_id: d for d in report.details}
        reviews = []
        for a in batch.answers:
            detail: Optional[DetailPayload] = details.get(a.question_id)
            reviews.append(QuestionReview(
                question_id=a.question_id,
                is_correct=a.is_correct,
                commentary=(detail.ai_comment if detail else "") or messages["analysis_unavailable"],
                fact_check=(detail.correct_fact if detail else "") or NOT_AVAILABLE,
                prompt=a.prompt,
                selected_option=a.selected_option,
                correct_option=a.correct_option,
            ))

        return EvaluationResult(
            topic_id=batch.category_id,
            title=report.title or batch.topic_label,
            total_score=score_batch(batch),
            human_percentile=clamp_percentile(report.human_percentile),
            demographic_percentile=clamp_percentile(report.demographic_percentile),
            narrative_comparison=report.ai_comparison,
            demographic_comment=report.demographic_comment,
            ai_score=ai_benchmark(difficulty),
            per_question=reviews,
        )
