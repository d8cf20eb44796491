"""Service orchestrating class state: blocks, question pointer and reset."""

from __future__ import annotations

import logging
import random
import string
from enum import Enum
from typing import Any, Callable

from quiz_live.constants.protocol_constants import EVT_CLASS_RESET, EVT_QUESTION_LAUNCHED
from quiz_live.constants.session_constants import (
    CHALLENGE_ID_PREFIX,
    CLASS_CODE_LENGTH,
    GAME_ENDED_ID_SUFFIX,
    GAME_ENDED_TYPE,
    PODIUM_SIZE,
)
from quiz_live.core.errors import SessionStateError, ValidationError
from quiz_live.core.markdown_math_renderer import MarkdownMathRenderer, renderer
from quiz_live.core.models import (
    ActiveQuestion,
    ClassMeta,
    ClassRecord,
    Clock,
    Participant,
    QuestionBlock,
    QuestionDefinition,
    challenge_id,
    utc_now,
)
from quiz_live.core.services.active_questions import ActiveQuestionBoard
from quiz_live.core.services.presence_tracker import PresenceTracker
from quiz_live.core.storage.repositories import Repositories

logger = logging.getLogger(__name__)

Publisher = Callable[[dict[str, Any], str | None], int]


class ClassPhase(str, Enum):
    """Where a class sits in its session state machine."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    QUESTION_ACTIVE = "question-active"
    REVEALED = "revealed"
    BLOCK_EXHAUSTED = "block-exhausted"
    FINISHED = "finished"


def generate_class_code(length: int = CLASS_CODE_LENGTH) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def looks_like_game_end(document: dict[str, Any]) -> bool:
    payload = document.get("payload") or {}
    return isinstance(payload, dict) and payload.get("type") == GAME_ENDED_TYPE


class ClassLifecycleManager:
    """Owns class records, their ``meta`` pointer and question launches."""

    def __init__(
        self,
        repositories: Repositories,
        presence: PresenceTracker,
        board: ActiveQuestionBoard,
        publish: Publisher,
        clock: Clock = utc_now,
        markdown: MarkdownMathRenderer = renderer,
    ) -> None:
        self._repos = repositories
        self._presence = presence
        self._board = board
        self._publish = publish
        self._clock = clock
        self._markdown = markdown

    # --- Class records ---

    async def create_class(
        self,
        name: str = "",
        teacher_name: str = "",
        class_id: str | None = None,
        active: bool = True,
    ) -> ClassRecord:
        if class_id:
            class_id = class_id.strip().upper()
        else:
            class_id = generate_class_code()
            while await self._repos.classes.exists(class_id):
                class_id = generate_class_code()
        record = ClassRecord(
            id=class_id,
            name=name.strip(),
            teacher_name=teacher_name.strip(),
            active=active,
            meta=ClassMeta(),
            created_at=self._clock(),
        )
        await self._repos.classes.save(record)
        logger.info("Created class %s", class_id)
        return record

    async def list_classes(self, active: bool | None = None) -> list[ClassRecord]:
        return await self._repos.classes.list_all(active)

    async def get_class(self, class_id: str) -> ClassRecord:
        return await self._repos.classes.require(class_id)

    async def update_class(
        self,
        class_id: str,
        *,
        name: str | None = None,
        teacher_name: str | None = None,
        active: bool | None = None,
    ) -> ClassRecord:
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name.strip()
        if teacher_name is not None:
            fields["teacherName"] = teacher_name.strip()
        if active is not None:
            fields["active"] = active
        if not fields:
            return await self.get_class(class_id)
        return await self._repos.classes.update_fields(class_id, fields)

    async def delete_class(self, class_id: str) -> None:
        """Delete a class and everything recorded for it."""
        await self._repos.classes.require(class_id)
        await self._repos.classes.delete(class_id)
        self._board.clear(class_id)
        for label, purge in (
            ("participants", self._repos.participants.delete_for_class),
            ("answers", self._repos.answers.delete_for_class),
            ("challenges", self._repos.challenges.delete_for_class),
        ):
            try:
                await purge(class_id)
            except Exception:
                logger.warning("Could not purge %s of class %s", label, class_id, exc_info=True)
        logger.info("Deleted class %s", class_id)

    # --- Blocks and pointer ---

    async def build_blocks(self, class_id: str, blocks: list[QuestionBlock]) -> ClassMeta:
        if not blocks or not any(block.questions for block in blocks):
            raise ValidationError("At least one block with questions is required.")
        record = await self._repos.classes.require(class_id)
        meta = ClassMeta(
            asked_questions=dict(record.meta.asked_questions),
            revealed_questions=dict(record.meta.revealed_questions),
            started_at=record.meta.started_at,
            blocks=list(blocks),
        )
        await self._repos.classes.save_meta(class_id, meta)
        logger.info("Built %d blocks for class %s", len(blocks), class_id)
        return meta

    async def get_phase(self, class_id: str) -> ClassPhase:
        record = await self._repos.classes.require(class_id)
        return self.derive_phase(record.meta, self._board.get(class_id) is not None)

    @staticmethod
    def derive_phase(meta: ClassMeta, has_active_question: bool) -> ClassPhase:
        if meta.finished:
            return ClassPhase.FINISHED
        if has_active_question:
            return ClassPhase.QUESTION_ACTIVE
        if not meta.has_blocks():
            return ClassPhase.UNINITIALIZED
        if meta.is_block_exhausted():
            return ClassPhase.BLOCK_EXHAUSTED
        block = meta.current_block()
        if block is not None and meta.current_question_index > 0:
            previous = block.questions[meta.current_question_index - 1]
            if meta.revealed_questions.get(previous.id):
                return ClassPhase.REVEALED
        return ClassPhase.READY

    async def launch_next(self, class_id: str) -> ActiveQuestion:
        record = await self._repos.classes.require(class_id)
        meta = record.meta
        phase = self.derive_phase(meta, self._board.get(class_id) is not None)
        if phase is ClassPhase.UNINITIALIZED:
            raise SessionStateError("Build the question blocks before launching.")
        if phase is ClassPhase.FINISHED:
            raise SessionStateError("The game has finished; reset the class to play again.")
        if phase is ClassPhase.QUESTION_ACTIVE:
            raise SessionStateError("A question is already running; reveal it first.")
        if phase is ClassPhase.BLOCK_EXHAUSTED:
            raise SessionStateError("No questions left in the current block.")
        return await self._launch_at_pointer(class_id, meta)

    async def jump_to_question(self, class_id: str, block_index: int, question_index: int) -> ActiveQuestion:
        record = await self._repos.classes.require(class_id)
        meta = record.meta
        if not 0 <= block_index < len(meta.blocks):
            raise ValidationError(f"Block index {block_index} is out of range.")
        block = meta.blocks[block_index]
        if not block.questions:
            raise ValidationError(f"Block '{block.id}' has no questions.")
        if not 0 <= question_index < len(block.questions):
            raise ValidationError(f"Question index {question_index} is out of range.")
        meta.current_block_index = block_index
        meta.current_question_index = question_index
        meta.finished = False
        return await self._launch_at_pointer(class_id, meta)

    async def _launch_at_pointer(self, class_id: str, meta: ClassMeta) -> ActiveQuestion:
        block = meta.current_block()
        if block is None or meta.current_question_index >= len(block.questions):
            raise SessionStateError("The question pointer is past the end of the block.")
        question_index = meta.current_question_index
        question = block.questions[question_index]
        meta.asked_questions[question.id] = True
        meta.revealed_questions.pop(question.id, None)
        meta.current_question_index = question_index + 1
        if meta.started_at is None:
            meta.started_at = self._clock()
        await self._repos.classes.save_meta(class_id, meta)
        return await self.launch_question(
            class_id,
            question,
            extras={
                "blockId": block.id,
                "blockName": block.name,
                "blockIndex": meta.current_block_index,
                "questionIndex": question_index,
            },
        )

    async def next_block(self, class_id: str) -> ClassMeta:
        record = await self._repos.classes.require(class_id)
        meta = record.meta
        target = meta.current_block_index + 1
        if target >= len(meta.blocks):
            raise SessionStateError("There are no more blocks.")
        meta.current_block_index = target
        first_unasked = meta.first_unasked_index(target)
        meta.current_question_index = first_unasked if first_unasked is not None else 0
        await self._repos.classes.save_meta(class_id, meta)
        return meta

    async def finish(self, class_id: str) -> list[Participant]:
        """Mark the game finished and return the podium."""
        record = await self._repos.classes.require(class_id)
        record.meta.finished = True
        await self._repos.classes.save_meta(class_id, record.meta)
        self._board.clear(class_id)
        try:
            await self.launch_challenge(
                {"classId": class_id, "title": "Game over", "payload": {"type": GAME_ENDED_TYPE}}
            )
        except Exception:
            logger.warning("Could not announce the end of class %s", class_id, exc_info=True)
        podium = await self._repos.participants.top(class_id, PODIUM_SIZE)
        logger.info("Class %s finished", class_id)
        return podium

    async def mark_revealed(self, class_id: str, question_id: str) -> None:
        """Record a reveal in ``meta``; failures are only logged."""
        self._board.clear_if(class_id, question_id)
        try:
            record = await self._repos.classes.get(class_id)
            if record is None:
                return
            record.meta.revealed_questions[question_id] = True
            await self._repos.classes.save_meta(class_id, record.meta)
        except Exception:
            logger.warning("Could not record reveal of %s in class %s", question_id, class_id, exc_info=True)

    # --- Launch ---

    async def launch_challenge(self, document: dict[str, Any]) -> ActiveQuestion:
        """Launch an ad-hoc question described by a raw challenge document."""
        class_id = str(document.get("classId") or "").strip()
        if not class_id:
            raise ValidationError("classId is required.")
        doc = dict(document)
        if looks_like_game_end(doc):
            doc["id"] = f"{class_id}{GAME_ENDED_ID_SUFFIX}"
            if not isinstance(doc.get("duration"), int):
                doc["duration"] = 0
        elif not doc.get("id"):
            doc["id"] = f"{CHALLENGE_ID_PREFIX}{int(self._clock().timestamp() * 1000)}"
        question = QuestionDefinition.from_document(doc)
        return await self.launch_question(class_id, question)

    async def launch_question(
        self,
        class_id: str,
        question: QuestionDefinition,
        extras: dict[str, Any] | None = None,
    ) -> ActiveQuestion:
        now = self._clock()
        challenge = question.to_document()
        challenge.update(
            {
                "id": challenge_id(class_id, question.id),
                "questionId": question.id,
                "classId": class_id,
                "created_at": now,
            }
        )
        if extras:
            challenge["payload"] = {**challenge["payload"], **extras}
        await self._repos.challenges.save(challenge)

        public = question.public_payload(title_html=self._markdown.render_fragment(question.title))
        if extras:
            public["payload"] = {**public["payload"], **extras}
        active = ActiveQuestion(class_id=class_id, question=question, started_at=now, public=public)
        self._board.set(active)
        try:
            self._publish({"type": EVT_QUESTION_LAUNCHED, "classId": class_id, "question": public}, class_id)
        except Exception:
            logger.warning("Broadcast of launch for %s failed", question.id, exc_info=True)
        return active

    async def list_challenges(self, class_id: str) -> list[dict[str, Any]]:
        return await self._repos.challenges.list_for_class(class_id)

    # --- Reset ---

    async def reset_class(self, class_id: str) -> ClassMeta:
        """Return the class to a fresh pointer.

        Only the ``meta`` write can fail the call. Purging answers, zeroing
        scores and the notifications are attempted independently and their
        failures are logged.
        """
        blocks: list[QuestionBlock] = []
        try:
            record = await self._repos.classes.get(class_id)
            if record is not None:
                blocks = record.meta.blocks
        except Exception:
            logger.warning("Could not read blocks of class %s before reset", class_id, exc_info=True)

        meta = ClassMeta(blocks=blocks)
        await self._repos.classes.save_meta(class_id, meta)
        self._board.clear(class_id)

        try:
            await self._repos.answers.delete_for_class(class_id)
        except Exception:
            logger.warning("Reset of class %s: could not purge answers", class_id, exc_info=True)
        try:
            await self._repos.participants.reset_scores(class_id)
        except Exception:
            logger.warning("Reset of class %s: could not reset scores", class_id, exc_info=True)
        try:
            self._publish({"type": EVT_CLASS_RESET, "classId": class_id}, class_id)
        except Exception:
            logger.warning("Reset of class %s: could not broadcast reset", class_id, exc_info=True)
        await self._presence.broadcast_participants(class_id)
        logger.info("Class %s reset", class_id)
        return meta
