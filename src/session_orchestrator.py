"""
Session Orchestrator: drives one multi-topic play session.

State machine:

    IDLE -> LOADING_FIRST -> PLAYING -> (PLAYING | WAITING_FOR_BACKGROUND)
         -> ... -> EVALUATING -> DONE

Only the first topic is resolved before play starts. The remaining topics
resolve as one background task while the player answers; the orchestrator
awaits that task only when it runs out of topics to serve. When every topic
is closed, the batches go through the Rating Updater and the Evaluator and
the session ends with one EvaluationResult per topic, in request order.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import config
from content_resolver import ContentResolver, fallback_set
from evaluator import EvaluationError, Evaluator, heuristic_evaluation
from generation_client import GenerationError
from quiz_models import (
    Answer,
    Batch,
    Difficulty,
    EvaluationResult,
    QuestionRecord,
    QuizSet,
    TopicRequest,
)
from rating_store import ProfileStore, RatingProfile
from rating_updater import update_profile
from topic_resolver import TopicResolver

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Where the session is in its lifecycle."""
    IDLE = "idle"
    LOADING_FIRST = "loading_first"
    PLAYING = "playing"
    WAITING_FOR_BACKGROUND = "waiting_for_background"
    EVALUATING = "evaluating"
    DONE = "done"


class SessionError(Exception):
    """The orchestrator was driven out of order."""


@dataclass
class SessionProgress:
    """Position within the session, for display."""
    topic_number: int
    total_topics: int
    topic_labels: list[str]
    question_number: int
    questions_in_topic: int


class SessionListener:
    """Receives session events. Override what you need."""

    def on_state_change(self, state: SessionState) -> None:
        pass

    def on_question(self, question: QuestionRecord, progress: SessionProgress) -> None:
        pass

    def on_results(self, results: list[EvaluationResult]) -> None:
        pass


class SessionOrchestrator:
    """Serves questions one at a time and evaluates the finished session."""

    def __init__(
        self,
        topic_resolver: TopicResolver,
        content_resolver: ContentResolver,
        evaluator: Evaluator,
        profile_store: ProfileStore,
        language: str = "en",
        answer_delay: float = config.ANSWER_ADVANCE_DELAY_SECONDS,
        listener: Optional[SessionListener] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.topic_resolver = topic_resolver
        self.content_resolver = content_resolver
        self.evaluator = evaluator
        self.profile_store = profile_store
        self.language = language
        self.answer_delay = answer_delay
        self.listener = listener or SessionListener()
        self._sleep = sleep
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self._state = SessionState.IDLE
        self._topics: list[TopicRequest] = []
        self._difficulty = Difficulty.MEDIUM
        self._profile = RatingProfile()
        self._queue: list[tuple[int, QuizSet]] = []
        self._background: Optional[asyncio.Task] = None
        self._current: Optional[tuple[int, QuizSet]] = None
        self._question_index = 0
        self._batch: Optional[Batch] = None
        self._batches: dict[int, Batch] = {}
        self._locked = False
        self._results: list[EvaluationResult] = []

    # --- read-only view ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def profile(self) -> RatingProfile:
        """Latest profile (updated once the session is evaluated)."""
        return self._profile

    @property
    def results(self) -> list[EvaluationResult]:
        return list(self._results)

    @property
    def current_topic(self) -> Optional[QuizSet]:
        return self._current[1] if self._current else None

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        if self._state != SessionState.PLAYING or not self._current:
            return None
        return self._current[1].questions[self._question_index]

    @property
    def progress(self) -> SessionProgress:
        questions = len(self._current[1].questions) if self._current else 0
        return SessionProgress(
            topic_number=len(self._batches) + (1 if self._current else 0),
            total_topics=len(self._topics),
            topic_labels=[t.display_label for t in self._topics],
            question_number=self._question_index + 1 if self._current else 0,
            questions_in_topic=questions,
        )

    @property
    def background_pending(self) -> bool:
        return self._background is not None and not self._background.done()

    # --- lifecycle ---

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        logger.debug("Session state -> %s", state.value)
        self.listener.on_state_change(state)

    async def start_session(
        self,
        labels: list[str],
        difficulty: Difficulty,
        profile: RatingProfile,
    ) -> QuestionRecord:
        """Start a session and return its first question.

        Args:
            labels: Topic labels as shown to the player, in play order
            difficulty: Base difficulty
            profile: Player profile at session start

        Returns:
            First question of the first topic

        Raises:
            SessionError: If no topics were given or a session is running
        """
        if not labels:
            raise SessionError("A session needs at least one topic")
        if self._state not in (SessionState.IDLE, SessionState.DONE):
            raise SessionError(f"Cannot start a session while {self._state.value}")

        self._clear()
        self._generation += 1
        self._difficulty = difficulty
        self._profile = profile
        self._topics = self.topic_resolver.resolve_all(labels, self.language)
        self._set_state(SessionState.LOADING_FIRST)

        first = await self._resolve_safely(self._topics[:1], offset=0)
        if len(self._topics) > 1:
            served = {q.id for q in first[0][1].questions}
            self._background = asyncio.create_task(
                self._resolve_safely(self._topics[1:], offset=1, exclude=served)
            )

        self._begin_topic(first[0])
        return self.current_question

    async def _resolve_safely(
        self,
        topics: list[TopicRequest],
        offset: int,
        exclude: Optional[set[int]] = None,
    ) -> list[tuple[int, QuizSet]]:
        """Resolve topics, tagging each set with its request index.

        Failures inside the resolver are handled per topic there; anything
        that still escapes becomes fallback sets so the session continues.
        """
        try:
            sets = await self.content_resolver.resolve(
                topics, self._difficulty, self.language, self._profile, exclude=exclude,
            )
        except Exception:
            logger.error("Content resolution failed for %s", [t.stable_id for t in topics], exc_info=True)
            sets = [fallback_set(t) for t in topics]
        return [(offset + i, s) for i, s in enumerate(sets)]

    def _begin_topic(self, entry: tuple[int, QuizSet]) -> None:
        index, quiz_set = entry
        self._current = entry
        self._question_index = 0
        self._batch = Batch(topic_label=quiz_set.topic.display_label, category_id=quiz_set.topic.category_id)
        logger.info(
            "Topic %d/%d: %s (%s)",
            index + 1, len(self._topics), quiz_set.topic.display_label, quiz_set.source.value,
        )
        self._set_state(SessionState.PLAYING)
        self.listener.on_question(self.current_question, self.progress)

    async def submit_answer(self, selected_option: str) -> Optional[QuestionRecord]:
        """Record an answer and advance.

        Selection is locked until the advance delay has passed.

        Args:
            selected_option: One of the current question's options

        Returns:
            The next question, or None when the session has finished

        Raises:
            SessionError: If not playing, already locked, or the option is invalid
        """
        if self._state != SessionState.PLAYING:
            raise SessionError(f"Cannot answer while {self._state.value}")
        if self._locked:
            raise SessionError("Answer already submitted for this question")
        question = self.current_question
        if selected_option not in question.options:
            raise SessionError(f"{selected_option!r} is not an option of question {question.id}")

        self._locked = True
        generation = self._generation
        self._batch.answers.append(Answer(
            question_id=question.id,
            prompt=question.prompt,
            selected_option=selected_option,
            correct_option=question.correct_option,
            is_correct=selected_option == question.correct_option,
            explanation=question.explanation,
        ))

        await self._sleep(self.answer_delay)
        if generation != self._generation:
            # reset() or a new session happened during the delay
            return None

        try:
            if self._question_index + 1 < len(self._current[1].questions):
                self._question_index += 1
                self.listener.on_question(self.current_question, self.progress)
                return self.current_question
            await self._close_topic()
            return self.current_question
        finally:
            self._locked = False

    async def _close_topic(self) -> None:
        index, _ = self._current
        self._batches[index] = self._batch
        self._batch = None
        self._current = None

        if not self._queue and self._background is not None:
            generation = self._generation
            if not self._background.done():
                self._set_state(SessionState.WAITING_FOR_BACKGROUND)
            delivered = await self._background
            if generation != self._generation:
                return
            self._queue.extend(delivered)
            self._background = None

        if self._queue:
            self._begin_topic(self._queue.pop(0))
        else:
            await self._evaluate()

    async def _evaluate(self) -> None:
        self._set_state(SessionState.EVALUATING)
        batches = [self._batches[i] for i in sorted(self._batches)]

        updated = update_profile(self._profile, batches, self._difficulty)
        try:
            await asyncio.to_thread(self.profile_store.save, updated)
        except OSError:
            logger.error("Could not save profile", exc_info=True)
        self._profile = updated

        try:
            results = await self.evaluator.evaluate(batches, updated, self.language, self._difficulty)
        except (GenerationError, EvaluationError) as e:
            logger.warning("Evaluation service unavailable, using local analysis: %s", e)
            results = heuristic_evaluation(batches, self.language, self._difficulty)
        except Exception:
            logger.error("Evaluation crashed, using local analysis", exc_info=True)
            results = heuristic_evaluation(batches, self.language, self._difficulty)

        self._results = results
        self._set_state(SessionState.DONE)
        self.listener.on_results(self.results)

    def reset(self) -> None:
        """Abandon the session. In-flight work finishes but its results are unused."""
        self._generation += 1
        self._clear()
        self._set_state(SessionState.IDLE)
