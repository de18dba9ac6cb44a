"""
Master-data seeding.

Generates master-language question sets for a fixed list of topics and
writes them into the bundled dataset (and the cache, so they are usable
immediately). Topics the dataset already covers are skipped. This is a
developer tool; translation at play time (tier 3) builds on its output.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from generation_client import GenerationClient, GenerationError
from question_bank import QuestionBank
from question_cache import QuestionCache
from question_decoder import decode_question_list
from quiz_models import (
    MASTER_LANGUAGE,
    QUESTIONS_PER_TOPIC,
    Difficulty,
    make_cache_key,
    make_dataset_key,
)

logger = logging.getLogger(__name__)

SEED_TARGETS = {
    "SCIENCE": ["Quantum Physics", "Neuroscience", "Astronomy"],
    "HISTORY": ["World War II", "Ancient Egypt", "Cold War"],
    "TECH": ["Artificial Intelligence", "Coding", "Blockchain"],
    "PHILOSOPHY": ["Stoicism", "Existentialism"],
}
SEED_PAUSE_SECONDS = 1.0


@dataclass
class SeedReport:
    """What a seeding run did, by stable id."""
    generated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def build_seed_prompt(topic: str, difficulty: Difficulty) -> str:
    return (
        f'Generate {QUESTIONS_PER_TOPIC} challenging, high-quality multiple-choice questions about "{topic}".\n'
        "\n"
        "Rules:\n"
        "1. Questions must be based on undisputed facts and verifiable data.\n"
        '2. No subjective value judgments ("Who is the best...") and no ambiguous scenarios.\n'
        "3. Exactly 4 distinct options; correctAnswer is one of them, verbatim.\n"
        f"- Language: English. Difficulty: {difficulty.value.title()}.\n"
        "- Format: JSON array with keys: question, options, correctAnswer, context.\n"
        "- context: a short, interesting fact explaining the answer.\n"
    )


async def seed_master_data(
    bank: QuestionBank,
    client: GenerationClient,
    cache: QuestionCache,
    targets: Optional[dict[str, list[str]]] = None,
    difficulty: Difficulty = Difficulty.HARD,
    on_progress: Optional[Callable[[str], None]] = None,
    pause: float = SEED_PAUSE_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SeedReport:
    """Generate master-language sets for every seed topic not yet bundled.

    Args:
        bank: Dataset to check and extend
        client: Generation client
        cache: Cache that also receives each new set
        targets: {category_id: [stable ids]}, SEED_TARGETS by default
        difficulty: Difficulty to seed
        on_progress: Called with a human-readable line per step
        pause: Delay between generation requests
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        SeedReport
    """
    targets = targets if targets is not None else SEED_TARGETS
    progress = on_progress or (lambda message: None)
    report = SeedReport()

    for category_id, topics in targets.items():
        for topic in topics:
            if bank.has_entry(topic, category_id, difficulty, MASTER_LANGUAGE):
                logger.info("Skipping %s, already in the dataset", topic)
                progress(f"Skipping {topic} (already exists)")
                report.skipped.append(topic)
                continue

            progress(f"Generating master data for {topic}...")
            try:
                raw = await client.generate(build_seed_prompt(topic, difficulty))
            except GenerationError as e:
                logger.warning("Seeding failed for %s: %s", topic, e)
                progress(f"Error seeding {topic}")
                report.failed.append(topic)
                continue

            decoded = decode_question_list(raw, topic, minimum=QUESTIONS_PER_TOPIC, derive_ids=True)
            if not decoded.ok:
                logger.warning("Seeding produced unusable questions for %s: %s", topic, decoded.error)
                progress(f"Error seeding {topic}")
                report.failed.append(topic)
                continue

            key = make_dataset_key(topic, difficulty, MASTER_LANGUAGE)
            try:
                bank.write_entry(category_id, key, decoded.questions)
            except OSError:
                logger.error("Could not write dataset entry %s", key, exc_info=True)
                progress(f"Error saving {topic}")
                report.failed.append(topic)
                continue
            await cache.put(make_cache_key(topic, difficulty, MASTER_LANGUAGE), decoded.questions)
            report.generated.append(topic)
            progress(f"Seeded {topic} ({len(decoded.questions)} questions)")

            await sleep(pause)

    progress("Seeding complete")
    return report
