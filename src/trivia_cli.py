#!/usr/bin/env python3
"""
Trivia CLI - play sessions and manage local player state.

Usage:
  trivia play TOPIC [TOPIC ...] [--difficulty D] [--language L]
  trivia profile                  Show ratings, tiers and recent history
  trivia set-profile [--gender G] [--age-group A] [--nationality N]
  trivia clear-cache              Empty the question cache
  trivia seed                     Generate master-language data
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime

import config
from content_resolver import ContentResolver
from evaluator import Evaluator
from generation_client import GeminiBackend, GenerationClient
from master_seeder import seed_master_data
from question_bank import QuestionBank
from question_cache import QuestionCache
from quiz_models import SUPPORTED_LANGUAGES, Difficulty, EvaluationResult, QuestionRecord
from rating_store import (
    ProfileStore,
    aggregate_rating,
    next_tier_threshold,
    tier_for_rating,
)
from session_orchestrator import SessionListener, SessionOrchestrator, SessionProgress, SessionState
from topic_resolver import TopicResolver

RECENT_HISTORY = 10


def build_client() -> GenerationClient:
    return GenerationClient(GeminiBackend())


def format_question_display(question: QuestionRecord, progress: SessionProgress) -> str:
    """Format a question for terminal display."""
    lines = [
        "",
        f"Topic {progress.topic_number}/{progress.total_topics}  "
        f"Q{progress.question_number}/{progress.questions_in_topic}",
        "-" * 60,
        question.prompt,
        "",
    ]
    for i, option in enumerate(question.options, 1):
        lines.append(f"  [{i}] {option}")
    lines.append("")
    return "\n".join(lines)


def format_results(results: list[EvaluationResult]) -> str:
    lines = ["", "=" * 60, "  Results", "=" * 60]
    for result in results:
        lines.append("")
        lines.append(f"{result.title} [{result.topic_id}]")
        lines.append(f"  You: {result.total_score}  AI: {result.ai_score}")
        lines.append(f"  Percentile: {result.human_percentile}  (demographic {result.demographic_percentile})")
        if result.narrative_comparison:
            lines.append(f"  {result.narrative_comparison}")
        if result.demographic_comment:
            lines.append(f"  {result.demographic_comment}")
        for review in result.per_question:
            mark = "✓" if review.is_correct else "✗"
            lines.append(f"    {mark} Q{review.question_id}: {review.commentary}")
    lines.append("")
    return "\n".join(lines)


class TerminalListener(SessionListener):
    """Prints session events."""

    def on_state_change(self, state: SessionState) -> None:
        if state == SessionState.LOADING_FIRST:
            print("Loading first topic...")
        elif state == SessionState.WAITING_FOR_BACKGROUND:
            print("\nPreparing the next topic...")
        elif state == SessionState.EVALUATING:
            print("\nEvaluating...")

    def on_question(self, question: QuestionRecord, progress: SessionProgress) -> None:
        print(format_question_display(question, progress))


async def read_choice(question: QuestionRecord) -> str:
    """Prompt until the player picks a valid option number."""
    while True:
        raw = (await asyncio.to_thread(input, "> ")).strip()
        if raw.isdigit() and 1 <= int(raw) <= len(question.options):
            return question.options[int(raw) - 1]
        print(f"Enter a number from 1 to {len(question.options)}.")


async def play_session(args) -> int:
    store = ProfileStore()
    profile = store.load()
    client = build_client()
    cache = QuestionCache()
    await cache.open()

    orchestrator = SessionOrchestrator(
        topic_resolver=TopicResolver.from_file(),
        content_resolver=ContentResolver(QuestionBank(), cache, client),
        evaluator=Evaluator(client),
        profile_store=store,
        language=args.language,
        listener=TerminalListener(),
    )

    try:
        question = await orchestrator.start_session(args.topics, Difficulty(args.difficulty), profile)
        while question is not None:
            choice = await read_choice(question)
            if choice == question.correct_option:
                print("Correct.")
            else:
                print(f"Wrong. Answer: {question.correct_option}")
            question = await orchestrator.submit_answer(choice)
    finally:
        await cache.close()

    print(format_results(orchestrator.results))
    return 0


def cmd_play(args):
    """Play a session over the given topics."""
    try:
        return asyncio.run(play_session(args))
    except (KeyboardInterrupt, EOFError):
        print("\nSession abandoned.")
        return 130


def cmd_profile(args):
    """Show ratings, tiers and recent history."""
    profile = ProfileStore().load()
    overall = aggregate_rating(profile)

    print("\nPlayer Profile")
    print("=" * 50)
    print(f"  Gender: {profile.gender or '-'}  Age group: {profile.age_group or '-'}  "
          f"Nationality: {profile.nationality or '-'}")
    print(f"  Overall: {overall} ({tier_for_rating(overall).value}, next at {next_tier_threshold(overall)})")
    print(f"  Questions seen: {len(profile.seen_question_ids)}")

    if profile.ratings:
        print("\nRatings:")
        for category, rating in sorted(profile.ratings.items()):
            print(f"    {category:<12} {rating:>5}  {tier_for_rating(rating).value}")

    if profile.best_scores:
        print("\nBest scores:")
        for label, score in sorted(profile.best_scores.items()):
            print(f"    {label}: {score}")

    if profile.history:
        print("\nRecent history:")
        for entry in profile.history[-RECENT_HISTORY:]:
            when = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M")
            print(f"    {when}  {entry.category_id:<12} {entry.score:>3} vs AI {entry.ai_benchmark} "
                  f"({entry.difficulty.value})")

    print()
    return 0


def cmd_set_profile(args):
    """Update demographic context."""
    store = ProfileStore()
    profile = store.load()
    if args.gender is not None:
        profile.gender = args.gender
    if args.age_group is not None:
        profile.age_group = args.age_group
    if args.nationality is not None:
        profile.nationality = args.nationality
    store.save(profile)
    print("Profile updated.")
    return 0


def cmd_clear_cache(args):
    """Empty the question cache."""
    asyncio.run(QuestionCache().clear())
    print(f"Cache cleared: {config.CACHE_PATH}")
    return 0


def cmd_seed(args):
    """Generate master-language data for the seed topics."""
    async def run():
        cache = QuestionCache()
        try:
            return await seed_master_data(QuestionBank(), build_client(), cache, on_progress=print)
        finally:
            await cache.close()

    report = asyncio.run(run())
    print(f"Generated {len(report.generated)}, skipped {len(report.skipped)}, failed {len(report.failed)}")
    return 1 if report.failed else 0


def main():
    parser = argparse.ArgumentParser(description="Trivia CLI")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    play = subparsers.add_parser("play", help="Play a session")
    play.add_argument("topics", nargs="+", help="Topic labels, in play order")
    play.add_argument("--difficulty", "-d", choices=[d.value for d in Difficulty], default=Difficulty.MEDIUM.value)
    play.add_argument("--language", "-l", choices=SUPPORTED_LANGUAGES, default="en")

    subparsers.add_parser("profile", help="Show ratings and history")

    set_profile = subparsers.add_parser("set-profile", help="Set demographic context")
    set_profile.add_argument("--gender")
    set_profile.add_argument("--age-group")
    set_profile.add_argument("--nationality")

    subparsers.add_parser("clear-cache", help="Empty the question cache")
    subparsers.add_parser("seed", help="Generate master-language data")

    args = parser.parse_args()

    logging.basicConfig(
        format=config.LOG_FORMAT,
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
    )

    commands = {
        "play": cmd_play,
        "profile": cmd_profile,
        "set-profile": cmd_set_profile,
        "clear-cache": cmd_clear_cache,
        "seed": cmd_seed,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
