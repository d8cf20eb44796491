"""Service recording answers and scoring free-text submissions on arrival."""

from __future__ import annotations

import logging
from typing import Any, Callable

from quiz_live.constants.protocol_constants import (
    EVT_ANSWER_EVALUATED,
    EVT_ANSWERS_COUNT,
    EVT_ANSWERS_UPDATED,
)
from quiz_live.core.errors import ValidationError
from quiz_live.core.evaluator import Evaluator
from quiz_live.core.models import (
    ActiveQuestion,
    AnswerEvaluation,
    AnswerRecord,
    Clock,
    EvaluationMode,
    EvaluationResult,
    utc_now,
)
from quiz_live.core.scoring import decayed_award, normalize_evaluator_score, tally_answers
from quiz_live.core.storage.repositories import AnswersRepository, ParticipantsRepository

logger = logging.getLogger(__name__)

Publisher = Callable[[dict[str, Any], str | None], int]

SOURCE_CLIENT = "client"
SOURCE_SERVER = "server"


class AnswerLedger:
    """Keeps exactly one live answer per (class, participant, question)."""

    def __init__(
        self,
        answers: AnswersRepository,
        participants: ParticipantsRepository,
        publish: Publisher,
        evaluator: Evaluator | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._answers = answers
        self._participants = participants
        self._publish = publish
        self._evaluator = evaluator
        self._clock = clock

    async def submit_answer(
        self,
        class_id: str,
        session_id: str,
        question_id: str,
        answer: Any,
        evaluation: dict[str, Any] | None = None,
        active: ActiveQuestion | None = None,
    ) -> AnswerRecord:
        """Store an answer, publish the live tally and score open answers.

        Only the upsert can fail the call. Broadcasts and evaluation are
        best-effort and their failures are logged.
        """
        if not class_id or not session_id or not question_id:
            raise ValidationError("classId, sessionId and questionId are required.")

        existing = await self._answers.get(class_id, session_id, question_id)
        record = AnswerRecord(
            class_id=class_id,
            session_id=session_id,
            question_id=question_id,
            answer=answer,
            created_at=self._clock(),
        )
        # An awarded evaluation survives resubmission.
        if existing is not None and existing.already_awarded():
            record.evaluation = existing.evaluation
        await self._answers.upsert(record)

        self._safe_publish(
            {
                "type": EVT_ANSWERS_UPDATED,
                "classId": class_id,
                "questionId": question_id,
                "answer": record.to_document(),
            },
            class_id,
        )
        await self.publish_counts(class_id, question_id)

        if active is not None and active.question.id == question_id and active.question.mode is EvaluationMode.OPEN:
            try:
                await self._evaluate_open(record, existing, evaluation, active)
            except Exception:
                logger.warning("Evaluation of answer %s failed", record.id, exc_info=True)
        return record

    async def publish_counts(self, class_id: str, question_id: str) -> dict[str, int]:
        try:
            records = await self._answers.list_for_question(class_id, question_id)
        except Exception:
            logger.warning("Could not tally answers for %s/%s", class_id, question_id, exc_info=True)
            return {}
        counts = tally_answers(record.answer for record in records)
        self._safe_publish(
            {
                "type": EVT_ANSWERS_COUNT,
                "classId": class_id,
                "questionId": question_id,
                "total": sum(counts.values()),
                "counts": counts,
            },
            class_id,
        )
        return counts

    async def _evaluate_open(
        self,
        record: AnswerRecord,
        existing: AnswerRecord | None,
        client_evaluation: dict[str, Any] | None,
        active: ActiveQuestion,
    ) -> None:
        if client_evaluation is not None:
            result = EvaluationResult(
                score=normalize_evaluator_score(client_evaluation.get("score")),
                feedback=str(client_evaluation.get("feedback") or ""),
            )
            source = SOURCE_CLIENT
        elif self._evaluator is not None:
            try:
                result = await self._evaluator.evaluate(active.question, record.answer)
            except Exception:
                logger.warning("Evaluator unavailable for answer %s", record.id, exc_info=True)
                return
            result = EvaluationResult(normalize_evaluator_score(result.score), result.feedback)
            source = SOURCE_SERVER
        else:
            return

        question = active.question
        award = decayed_award(
            question.points,
            result.score,
            record.created_at,
            active.started_at,
            question.duration_seconds,
            question.time_decay,
        )
        if existing is not None and existing.already_awarded():
            award = existing.evaluation.awarded_points
        elif award > 0:
            await self._participants.increment_score(record.class_id, record.session_id, award, self._clock())

        evaluation = AnswerEvaluation(
            score=result.score,
            feedback=result.feedback,
            awarded_points=award,
            source=source,
            evaluated_at=self._clock(),
        )
        await self._answers.set_evaluation(record, evaluation)
        record.evaluation = evaluation
        self._safe_publish(
            {
                "type": EVT_ANSWER_EVALUATED,
                "classId": record.class_id,
                "questionId": record.question_id,
                "sessionId": record.session_id,
                "score": evaluation.score,
                "feedback": evaluation.feedback,
                "awardedPoints": evaluation.awarded_points,
                "source": evaluation.source,
            },
            record.class_id,
        )

    def _safe_publish(self, payload: dict[str, Any], class_id: str) -> None:
        try:
            self._publish(payload, class_id)
        except Exception:
            logger.warning("Broadcast of %s failed", payload.get("type"), exc_info=True)
