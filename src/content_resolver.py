"""
Content Resolution Engine.

For every requested topic, fill a five-question set from the cheapest
source that can supply enough questions the player has not seen:

1. bundled dataset in the target language
2. persistent cache in the target language (merged with tier 1)
3. master-language dataset, translated as a unit and cached
4. live generation, one batched request for every topic still short

A topic that generation cannot fill gets the emergency fallback set. One
topic failing never affects the others, and results always come back in
request order.
"""
import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from generation_client import GenerationClient, GenerationError
from question_bank import QuestionBank
from question_cache import QuestionCache
from question_decoder import decode_question_list, decode_topic_map
from quiz_models import (
    LANGUAGE_NAMES,
    MASTER_LANGUAGE,
    QUESTIONS_PER_TOPIC,
    ContentSource,
    Difficulty,
    QuestionRecord,
    QuizSet,
    TopicRequest,
    make_cache_key,
)
from rating_store import RatingProfile, adaptive_level

logger = logging.getLogger(__name__)

FALLBACK_QUESTIONS = [
    QuestionRecord(
        id=1,
        prompt="Which is not a characteristic of Human Intelligence?",
        options=["Emotional Intuition", "Pattern Recognition", "Finite Biological Memory", "Infinite Electricity Consumption"],
        correct_option="Infinite Electricity Consumption",
        explanation="AI uses vast amounts of electricity compared to the human brain.",
    ),
    QuestionRecord(
        id=2,
        prompt="What is the Turing Test designed to determine?",
        options=["CPU Speed", "AI's ability to exhibit human-like behavior", "Battery life", "Internet connectivity"],
        correct_option="AI's ability to exhibit human-like behavior",
    ),
    QuestionRecord(
        id=3,
        prompt="Who is your opponent in this game?",
        options=["A weightlifter", "A simulated AI", "A cooking robot", "A marathon runner"],
        correct_option="A simulated AI",
    ),
    QuestionRecord(
        id=4,
        prompt="In AI terminology, what does 'LLM' stand for?",
        options=["Light Level Monitor", "Large Language Model", "Long Logic Mode", "Lunar Landing Module"],
        correct_option="Large Language Model",
    ),
    QuestionRecord(
        id=5,
        prompt="Who is often called the father of Computer Science?",
        options=["Alan Turing", "Steve Jobs", "Elon Musk", "Thomas Edison"],
        correct_option="Alan Turing",
    ),
]

QUESTION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "question": {"type": "STRING"},
        "options": {"type": "ARRAY", "items": {"type": "STRING"}},
        "correctAnswer": {"type": "STRING"},
        "context": {"type": "STRING"},
    },
    "required": ["question", "options", "correctAnswer", "context"],
}


def fallback_set(topic: TopicRequest) -> QuizSet:
    return QuizSet(
        topic=topic,
        questions=[QuestionRecord.from_dict(q.to_dict()) for q in FALLBACK_QUESTIONS],
        source=ContentSource.FALLBACK,
    )


def topic_map_schema(stable_ids: list[str]) -> dict:
    """Response schema: an object with one question array per stable id."""
    return {
        "type": "OBJECT",
        "properties": {sid: {"type": "ARRAY", "items": QUESTION_SCHEMA} for sid in stable_ids},
        "required": list(stable_ids),
    }


def build_translation_prompt(questions: list[QuestionRecord], language: str) -> str:
    payload = json.dumps([q.to_dict() for q in questions], ensure_ascii=False)
    return (
        f"Translate these quiz questions from {LANGUAGE_NAMES[MASTER_LANGUAGE]} to "
        f"{LANGUAGE_NAMES.get(language, language)}.\n"
        "Keep every id unchanged and translate correct_option exactly as the matching option.\n"
        "Return strictly valid JSON: an array with the same structure as the input.\n"
        f"INPUT: {payload}"
    )


def build_generation_prompt(
    topics: list[TopicRequest],
    difficulty: Difficulty,
    language: str,
    profile: RatingProfile,
) -> str:
    """Prompt for one batched generation request over several topics."""
    stable_ids = [t.stable_id for t in topics]
    contexts = []
    for topic in topics:
        rating = profile.rating_for(topic.category_id)
        contexts.append(f"{topic.stable_id}: User Knowledge Level: {adaptive_level(rating)} (Elo {rating})")

    return (
        "You are a high-level knowledge testing AI.\n"
        f"Generate {QUESTIONS_PER_TOPIC} multiple-choice questions for EACH of the following topics: "
        f"{json.dumps(stable_ids, ensure_ascii=False)}.\n"
        "\n"
        "INSTRUCTIONS:\n"
        f"1. Base Difficulty: {difficulty.value}.\n"
        "2. All questions must be based on undisputed, verifiable facts. No opinions or ambiguous scenarios.\n"
        "3. Each question has exactly 4 distinct options and correctAnswer is one of them, verbatim.\n"
        f"4. User adaptation profile: {'; '.join(contexts)}.\n"
        f"5. Target audience: age {profile.age_group or 'General'}, nationality {profile.nationality or 'unspecified'}.\n"
        f"6. Generate content in {LANGUAGE_NAMES.get(language, language)} ONLY.\n"
        f"7. Return a JSON object whose keys are exactly: {', '.join(stable_ids)}.\n"
    )


@dataclass
class _TopicWork:
    """Resolution state for one requested topic."""
    index: int
    topic: TopicRequest
    pool: list[QuestionRecord] = field(default_factory=list)
    result: Optional[QuizSet] = None

    def add(self, questions: list[QuestionRecord], exclude: set[int]) -> None:
        """Add unseen questions not already in the pool."""
        have = {q.id for q in self.pool}
        for q in questions:
            if q.id not in exclude and q.id not in have:
                self.pool.append(q)
                have.add(q.id)

    def fresh(self, taken: set[int]) -> list[QuestionRecord]:
        """Pool entries not taken since they were added."""
        return [q for q in self.pool if q.id not in taken]

    def has_enough(self, taken: set[int]) -> bool:
        return len(self.fresh(taken)) >= QUESTIONS_PER_TOPIC


class ContentResolver:
    """Four-tier question sourcing for a list of topics."""

    def __init__(
        self,
        question_bank: QuestionBank,
        cache: QuestionCache,
        client: GenerationClient,
        rng: Optional[random.Random] = None,
    ):
        self.question_bank = question_bank
        self.cache = cache
        self.client = client
        self.rng = rng or random.Random()

    async def resolve(
        self,
        topics: list[TopicRequest],
        difficulty: Difficulty,
        language: str,
        profile: RatingProfile,
        exclude: Optional[set[int]] = None,
    ) -> list[QuizSet]:
        """Resolve one question set per topic.

        No question is served twice: ids the player has seen, ids in
        `exclude` and ids already picked for an earlier topic of this call
        are skipped. The emergency fallback set is the only exception.

        Args:
            topics: Normalized topic requests
            difficulty: Base difficulty
            language: Target language code
            profile: Player profile (seen ids, ratings, demographics)
            exclude: Ids already served elsewhere in the session

        Returns:
            One QuizSet of QUESTIONS_PER_TOPIC questions per topic, in
            the same order as `topics`
        """
        taken = set(profile.seen_question_ids) | set(exclude or ())
        work = [_TopicWork(index=i, topic=t) for i, t in enumerate(topics)]

        pending = []
        for item in work:
            await self._local_tiers(item, difficulty, language, taken)
            if item.result is None:
                pending.append(item)

        if pending and language != MASTER_LANGUAGE:
            translated = await asyncio.gather(
                *(self._translate(item, difficulty, language, taken) for item in pending),
                return_exceptions=True,
            )
            still_pending = []
            for item, outcome in zip(pending, translated):
                if isinstance(outcome, BaseException):
                    logger.error("Translation crashed for %s", item.topic.stable_id, exc_info=outcome)
                if outcome is not True:
                    still_pending.append(item)
            pending = still_pending

        if pending:
            try:
                await self._generate(pending, difficulty, language, profile, taken)
            except Exception:
                logger.error("Generation crashed for %s", [i.topic.stable_id for i in pending], exc_info=True)
                for item in pending:
                    if item.result is None:
                        item.result = fallback_set(item.topic)

        return [item.result for item in work]

    def _sample(self, item: _TopicWork, source: ContentSource, taken: set[int]) -> QuizSet:
        """Pick the topic's questions and mark them taken for later topics."""
        questions = self.rng.sample(item.fresh(taken), QUESTIONS_PER_TOPIC)
        taken.update(q.id for q in questions)
        return QuizSet(topic=item.topic, questions=questions, source=source)

    async def _local_tiers(self, item: _TopicWork, difficulty: Difficulty, language: str, taken: set[int]) -> None:
        topic = item.topic
        bundled = self.question_bank.lookup(topic.stable_id, topic.category_id, difficulty, language) or []
        item.add(bundled, taken)
        if item.has_enough(taken):
            logger.info("Static hit for %s (%s)", topic.stable_id, language)
            item.result = self._sample(item, ContentSource.BUNDLED, taken)
            return

        cached = await self.cache.get(make_cache_key(topic.stable_id, difficulty, language)) or []
        item.add(cached, taken)
        if item.has_enough(taken):
            logger.info("Cache hit for %s (%s)", topic.stable_id, language)
            item.result = self._sample(item, ContentSource.CACHE, taken)

    async def _cache_merged(self, key: str, records: list[QuestionRecord]) -> None:
        """Store records under key together with the entries already cached there."""
        existing = await self.cache.get(key) or []
        new_ids = {r.id for r in records}
        await self.cache.put(key, [q for q in existing if q.id not in new_ids] + list(records))

    async def _translate(self, item: _TopicWork, difficulty: Difficulty, language: str, taken: set[int]) -> bool:
        """Tier 3. Returns True when the topic is now filled."""
        topic = item.topic
        master = self.question_bank.lookup(topic.stable_id, topic.category_id, difficulty, MASTER_LANGUAGE) or []
        in_pool = {q.id for q in item.pool}
        candidates = [q for q in master if q.id not in taken and q.id not in in_pool]
        if not candidates:
            return False

        selection = self.rng.sample(candidates, min(QUESTIONS_PER_TOPIC, len(candidates)))
        logger.info("Translating %d %s questions for %s", len(selection), MASTER_LANGUAGE, topic.stable_id)
        try:
            raw = await self.client.generate(build_translation_prompt(selection, language))
        except GenerationError as e:
            logger.warning("Translation failed for %s: %s", topic.stable_id, e)
            return False

        source_ids = {q.id for q in selection}
        decoded = decode_question_list(raw, topic.stable_id)
        translated = [q for q in decoded.questions if q.id in source_ids]
        if not translated:
            logger.warning("Translation for %s returned no usable questions: %s", topic.stable_id, decoded.error)
            return False

        await self._cache_merged(make_cache_key(topic.stable_id, difficulty, language), translated)
        item.add(translated, taken)
        if not item.has_enough(taken):
            return False
        item.result = self._sample(item, ContentSource.TRANSLATION, taken)
        return True

    async def _generate(
        self,
        pending: list[_TopicWork],
        difficulty: Difficulty,
        language: str,
        profile: RatingProfile,
        taken: set[int],
    ) -> None:
        """Tier 4: one request for every topic still short."""
        unique: dict[str, TopicRequest] = {}
        for item in pending:
            unique.setdefault(item.topic.stable_id, item.topic)
        stable_ids = list(unique)
        logger.info("Generating questions for %s (%s)", stable_ids, language)

        try:
            raw = await self.client.generate(
                build_generation_prompt(list(unique.values()), difficulty, language, profile),
                topic_map_schema(stable_ids),
            )
        except GenerationError as e:
            logger.warning("Generation failed for %s, using fallback: %s", stable_ids, e)
            for item in pending:
                item.result = fallback_set(item.topic)
            return

        decoded = decode_topic_map(raw, stable_ids, minimum=QUESTIONS_PER_TOPIC)
        for stable_id, result in decoded.items():
            if result.ok:
                await self._cache_merged(make_cache_key(stable_id, difficulty, language), result.questions)

        for item in pending:
            result = decoded[item.topic.stable_id]
            if not result.ok:
                logger.warning("Malformed generation for %s, using fallback: %s", item.topic.stable_id, result.error)
                item.result = fallback_set(item.topic)
                continue
            item.add(result.questions, taken)
            if item.has_enough(taken):
                item.result = self._sample(item, ContentSource.GENERATION, taken)
            else:
                logger.warning("Not enough unseen questions for %s, using fallback", item.topic.stable_id)
                item.result = fallback_set(item.topic)
