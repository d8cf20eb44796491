"""Facade wiring the live-session services together.

The API server and the realtime message router only talk to
:class:`SessionEngine`. It owns the per-process state (connection registry,
active questions, presence throttles and auto-reveal timers) and injects it into
the services, so every engine instance is independent.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from quiz_live.constants.session_constants import (
    DEFAULT_DURATION_SECONDS,
    GAME_ENDED_TYPE,
    PARTICIPANT_MIN_BROADCAST_MS,
    PARTICIPANT_MIN_PERSIST_MS,
)
from quiz_live.core.errors import EvaluatorError, SessionStateError, ValidationError
from quiz_live.core.evaluator import Evaluator
from quiz_live.core.models import (
    ActiveQuestion,
    AnswerRecord,
    ClassMeta,
    Clock,
    EvaluationMode,
    EvaluationResult,
    Participant,
    QuestionBlock,
    QuestionDefinition,
    utc_now,
)
from quiz_live.core.services.active_questions import ActiveQuestionBoard
from quiz_live.core.services.answer_ledger import AnswerLedger
from quiz_live.core.services.class_lifecycle import ClassLifecycleManager
from quiz_live.core.services.connection_registry import ConnectionRegistry
from quiz_live.core.services.presence_tracker import PresenceTracker
from quiz_live.core.services.reveal_engine import RevealEngine, RevealOutcome
from quiz_live.core.storage.document_store import DocumentStore
from quiz_live.core.storage.repositories import Repositories

logger = logging.getLogger(__name__)


class SessionEngine:
    """Entry point for every live-session operation."""

    def __init__(
        self,
        store: DocumentStore,
        evaluator: Evaluator | None = None,
        *,
        clock: Clock = utc_now,
        registry: ConnectionRegistry | None = None,
        board: ActiveQuestionBoard | None = None,
        min_persist_ms: int = PARTICIPANT_MIN_PERSIST_MS,
        min_broadcast_ms: int = PARTICIPANT_MIN_BROADCAST_MS,
        default_duration_seconds: int = DEFAULT_DURATION_SECONDS,
        auto_reveal_on_all_answered: bool = False,
        auto_reveal_on_timeout: bool = False,
        presence_sweep_interval_seconds: float = 0.0,
        presence_stale_after_seconds: float = 300.0,
    ) -> None:
        self.clock = clock
        self.store = store
        self.evaluator = evaluator
        self.repos = Repositories(store)
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.board = board if board is not None else ActiveQuestionBoard()
        publish = self.registry.publish

        self.presence = PresenceTracker(
            self.repos.participants,
            publish,
            min_persist_ms=min_persist_ms,
            min_broadcast_ms=min_broadcast_ms,
            clock=clock,
        )
        self.ledger = AnswerLedger(
            self.repos.answers,
            self.repos.participants,
            publish,
            evaluator=evaluator,
            clock=clock,
        )
        self.reveals = RevealEngine(
            self.repos.answers,
            self.repos.participants,
            self.presence,
            publish,
            evaluator=evaluator,
            clock=clock,
            default_duration_seconds=default_duration_seconds,
        )
        self.lifecycle = ClassLifecycleManager(
            self.repos,
            self.presence,
            self.board,
            publish,
            clock=clock,
        )

        self._auto_reveal_on_all_answered = auto_reveal_on_all_answered
        self._auto_reveal_on_timeout = auto_reveal_on_timeout
        self._sweep_interval = presence_sweep_interval_seconds
        self._stale_after = timedelta(seconds=presence_stale_after_seconds)
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._settling: set[tuple[str, str]] = set()
        self._sweep_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, store: DocumentStore, evaluator: Evaluator | None, settings: Any) -> "SessionEngine":
        return cls(
            store,
            evaluator,
            min_persist_ms=settings.participant_min_persist_ms,
            min_broadcast_ms=settings.participant_min_broadcast_ms,
            default_duration_seconds=settings.default_duration_seconds,
            auto_reveal_on_all_answered=settings.auto_reveal_on_all_answered,
            auto_reveal_on_timeout=settings.auto_reveal_on_timeout,
            presence_sweep_interval_seconds=settings.presence_sweep_interval_seconds,
            presence_stale_after_seconds=settings.presence_stale_after_seconds,
        )

    # --- Process lifecycle ---

    async def start(self) -> None:
        await self.store.ensure_indexes()
        if self._sweep_interval > 0 and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        for class_id in list(self._timers):
            self._cancel_timer(class_id)
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        await self.store.close()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.presence.prune_throttle_entries(self._stale_after)

    # --- Questions ---

    async def launch_next(self, class_id: str) -> ActiveQuestion:
        self._cancel_timer(class_id)
        active = await self.lifecycle.launch_next(class_id)
        self._schedule_timeout(active)
        return active

    async def jump_to_question(self, class_id: str, block_index: int, question_index: int) -> ActiveQuestion:
        self._cancel_timer(class_id)
        active = await self.lifecycle.jump_to_question(class_id, block_index, question_index)
        self._schedule_timeout(active)
        return active

    async def launch_challenge(self, document: dict[str, Any]) -> ActiveQuestion:
        class_id = str(document.get("classId") or "")
        self._cancel_timer(class_id)
        active = await self.lifecycle.launch_challenge(document)
        self._schedule_timeout(active)
        return active

    async def build_blocks(self, class_id: str, blocks: list[QuestionBlock]) -> ClassMeta:
        return await self.lifecycle.build_blocks(class_id, blocks)

    async def next_block(self, class_id: str) -> ClassMeta:
        return await self.lifecycle.next_block(class_id)

    async def finish(self, class_id: str) -> list[Participant]:
        self._cancel_timer(class_id)
        return await self.lifecycle.finish(class_id)

    async def reset_class(self, class_id: str) -> ClassMeta:
        self._cancel_timer(class_id)
        return await self.lifecycle.reset_class(class_id)

    async def delete_class(self, class_id: str) -> None:
        self._cancel_timer(class_id)
        await self.lifecycle.delete_class(class_id)

    # --- Answers and reveal ---

    async def submit_answer(
        self,
        class_id: str,
        session_id: str,
        question_id: str,
        answer: Any,
        evaluation: dict[str, Any] | None = None,
    ) -> AnswerRecord:
        active = self.board.get_matching(class_id, question_id)
        record = await self.ledger.submit_answer(
            class_id, session_id, question_id, answer, evaluation=evaluation, active=active
        )
        if self._auto_reveal_on_all_answered and active is not None:
            await self._reveal_if_everyone_answered(class_id, question_id)
        return record

    async def reveal(
        self,
        class_id: str,
        question_id: str,
        correct_answer: Any = None,
        points: int | None = None,
    ) -> RevealOutcome:
        """Settle a question.

        ``correct_answer`` defaults to the authored answer of the active
        question; multiple-choice and red-flag questions cannot be settled
        without one.
        """
        if not class_id or not question_id:
            raise ValidationError("classId and questionId are required.")
        active = self.board.get_matching(class_id, question_id)
        mode = active.question.mode if active is not None else EvaluationMode.MCQ
        if correct_answer is None and active is not None:
            correct_answer = active.question.scoring.authored_answer()
        if correct_answer is None and mode is not EvaluationMode.OPEN:
            raise ValidationError("correctAnswer is required.")

        key = (class_id, question_id)
        if key in self._settling:
            raise SessionStateError(f"Question {question_id} is already being revealed.")
        self._settling.add(key)
        try:
            self._cancel_timer(class_id)
            outcome = await self.reveals.reveal_question(
                class_id, question_id, correct_answer, points=points, active=active
            )
            await self.lifecycle.mark_revealed(class_id, question_id)
        finally:
            self._settling.discard(key)
        return outcome

    async def _reveal_if_everyone_answered(self, class_id: str, question_id: str) -> None:
        try:
            connected = await self.repos.participants.count_connected(class_id)
            answered = await self.repos.answers.count_for_question(class_id, question_id)
        except Exception:
            logger.warning("Could not check answer progress for %s", question_id, exc_info=True)
            return
        if connected >= 1 and answered >= connected:
            logger.info("Everyone answered %s in class %s; revealing", question_id, class_id)
            await self._auto_reveal(class_id, question_id)

    async def _auto_reveal(self, class_id: str, question_id: str) -> None:
        active = self.board.get_matching(class_id, question_id)
        if active is None or (class_id, question_id) in self._settling:
            return
        if active.question.mode is not EvaluationMode.OPEN and active.question.scoring.authored_answer() is None:
            logger.info("Skipping automatic reveal of %s: no authored answer", question_id)
            return
        try:
            await self.reveal(class_id, question_id)
        except Exception:
            logger.warning("Automatic reveal of %s failed", question_id, exc_info=True)

    def _schedule_timeout(self, active: ActiveQuestion) -> None:
        if not self._auto_reveal_on_timeout:
            return
        if active.question.duration_seconds <= 0 or active.question.extras.get("type") == GAME_ENDED_TYPE:
            return
        self._timers[active.class_id] = asyncio.create_task(
            self._reveal_after(active.class_id, active.question.id, active.question.duration_seconds)
        )

    async def _reveal_after(self, class_id: str, question_id: str, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        self._timers.pop(class_id, None)
        logger.info("Time is up for %s in class %s", question_id, class_id)
        await self._auto_reveal(class_id, question_id)

    def _cancel_timer(self, class_id: str) -> None:
        task = self._timers.pop(class_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # --- Participants, history and tools ---

    async def list_participants(self, class_id: str, include_disconnected: bool = False) -> list[Participant]:
        return await self.presence.list_participants(class_id, include_disconnected)

    async def save_participant(self, class_id: str, session_id: str, **fields: Any) -> Participant | None:
        return await self.presence.save_participant(class_id, session_id, **fields)

    async def reset_scores(self, class_id: str) -> int:
        return await self.presence.reset_scores(class_id)

    async def list_answers(
        self,
        class_id: str | None = None,
        question_id: str | None = None,
        session_id: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.repos.answers.find(class_id, question_id, session_id)

    async def delete_answers(
        self,
        class_id: str,
        question_id: str | None = None,
        session_id: str | None = None,
    ) -> int:
        return await self.repos.answers.delete(class_id, question_id, session_id)

    async def evaluate(self, question: QuestionDefinition, answer: Any) -> EvaluationResult:
        if self.evaluator is None:
            raise EvaluatorError("No evaluator is configured.")
        return await self.evaluator.evaluate(question, answer)

    async def collection_counts(self) -> dict[str, int]:
        return await self.repos.collection_counts()
