"""Settlement of a question: distribution, correctness and point awards."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from quiz_live.constants.protocol_constants import EVT_QUESTION_RESULTS
from quiz_live.constants.session_constants import (
    DEFAULT_DURATION_SECONDS,
    DEFAULT_POINTS,
    EVALUATION_UNAVAILABLE_FEEDBACK,
)
from quiz_live.core.evaluator import Evaluator
from quiz_live.core.models import (
    ActiveQuestion,
    AnswerEvaluation,
    AnswerRecord,
    Clock,
    EvaluationMode,
    RedFlagsScoring,
    utc_now,
)
from quiz_live.core.scoring import (
    decayed_award,
    mcq_matches,
    normalize_evaluator_score,
    redflags_fraction,
    tally_answers,
)
from quiz_live.core.services.presence_tracker import PresenceTracker
from quiz_live.core.storage.repositories import AnswersRepository, ParticipantsRepository
from quiz_live.core.wire import answer_key

logger = logging.getLogger(__name__)

Publisher = Callable[[dict[str, Any], str | None], int]


@dataclass(slots=True)
class RevealOutcome:
    """What a reveal computed and awarded."""

    class_id: str
    question_id: str
    mode: EvaluationMode
    distribution: dict[str, int]
    correct_sessions: list[str]
    awards: dict[str, int] = field(default_factory=dict)
    evaluations: list[dict[str, Any]] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return {
            "ok": True,
            "questionId": self.question_id,
            "evaluation": self.mode.value,
            "distribution": self.distribution,
            "correctSessions": self.correct_sessions,
            "awards": self.awards,
            "evaluations": self.evaluations,
        }


@dataclass(slots=True)
class _Timing:
    started_at: datetime | None
    duration_seconds: int
    time_decay: bool


class RevealEngine:
    """Scores every stored answer for a question and publishes the results."""

    def __init__(
        self,
        answers: AnswersRepository,
        participants: ParticipantsRepository,
        presence: PresenceTracker,
        publish: Publisher,
        evaluator: Evaluator | None = None,
        clock: Clock = utc_now,
        default_duration_seconds: int = DEFAULT_DURATION_SECONDS,
    ) -> None:
        self._answers = answers
        self._participants = participants
        self._presence = presence
        self._publish = publish
        self._evaluator = evaluator
        self._clock = clock
        self._default_duration = default_duration_seconds

    async def reveal_question(
        self,
        class_id: str,
        question_id: str,
        correct_answer: Any,
        points: int | None = None,
        active: ActiveQuestion | None = None,
    ) -> RevealOutcome:
        records = await self._answers.list_for_question(class_id, question_id)
        if active is not None:
            question = active.question
            mode = question.mode
            timing = _Timing(active.started_at, question.duration_seconds, question.time_decay)
            if points is None:
                points = question.points
        else:
            mode = EvaluationMode.MCQ
            timing = _Timing(None, self._default_duration, True)
        if points is None:
            points = DEFAULT_POINTS

        distribution = tally_answers(record.answer for record in records)
        outcome = RevealOutcome(
            class_id=class_id,
            question_id=question_id,
            mode=mode,
            distribution=distribution,
            correct_sessions=[],
        )

        if mode is EvaluationMode.MCQ:
            await self._settle_mcq(outcome, records, correct_answer, points, timing)
        elif mode is EvaluationMode.REDFLAGS:
            expected = correct_answer
            if expected is None and active is not None and isinstance(active.question.scoring, RedFlagsScoring):
                expected = list(active.question.scoring.expected_flags)
            await self._settle_redflags(outcome, records, expected, points, timing)
        else:
            outcome.correct_sessions = [
                record.session_id for record in records
                if correct_answer is not None and answer_key(record.answer) == answer_key(correct_answer)
            ]
            await self._settle_open(outcome, records, points, timing, active)

        results: dict[str, Any] = {
            "type": EVT_QUESTION_RESULTS,
            "classId": class_id,
            "questionId": question_id,
            "distribution": outcome.distribution,
            "correctSessions": outcome.correct_sessions,
            "correctAnswer": correct_answer,
        }
        if mode is EvaluationMode.OPEN:
            results["answers"] = [
                {"sessionId": r.session_id, "answer": r.answer, "created_at": r.created_at}
                for r in records
            ]
        try:
            self._publish(results, class_id)
        except Exception:
            logger.warning("Broadcast of results for %s failed", question_id, exc_info=True)
        await self._presence.broadcast_participants(class_id)
        return outcome

    async def _settle_mcq(
        self,
        outcome: RevealOutcome,
        records: list[AnswerRecord],
        correct_answer: Any,
        points: int,
        timing: _Timing,
    ) -> None:
        for record in records:
            if not mcq_matches(record.answer, correct_answer):
                continue
            outcome.correct_sessions.append(record.session_id)
            await self._award(outcome, record, 1.0, points, timing)

    async def _settle_redflags(
        self,
        outcome: RevealOutcome,
        records: list[AnswerRecord],
        expected: Any,
        points: int,
        timing: _Timing,
    ) -> None:
        if expected is None:
            expected_flags: list[Any] = []
        elif isinstance(expected, (list, tuple, set)):
            expected_flags = list(expected)
        else:
            expected_flags = [expected]
        for record in records:
            fraction = redflags_fraction(record.answer, expected_flags)
            if fraction >= 1.0:
                outcome.correct_sessions.append(record.session_id)
            await self._award(outcome, record, fraction, points, timing)

    async def _settle_open(
        self,
        outcome: RevealOutcome,
        records: list[AnswerRecord],
        points: int,
        timing: _Timing,
        active: ActiveQuestion | None,
    ) -> None:
        async def settle(record: AnswerRecord) -> dict[str, Any]:
            if record.already_awarded():
                stored = record.evaluation
                return {
                    "sessionId": record.session_id,
                    "score": normalize_evaluator_score(stored.score),
                    "feedback": stored.feedback,
                    "awardedPoints": stored.awarded_points,
                }
            unavailable = {
                "sessionId": record.session_id,
                "score": 0.0,
                "feedback": EVALUATION_UNAVAILABLE_FEEDBACK,
                "awardedPoints": 0,
            }
            if self._evaluator is None or active is None:
                return unavailable
            try:
                result = await self._evaluator.evaluate(active.question, record.answer)
            except Exception as exc:
                logger.warning("Evaluation for %s failed: %s", record.session_id, exc)
                return unavailable
            fraction = normalize_evaluator_score(result.score)
            awarded = await self._award(outcome, record, fraction, points, timing)
            evaluation = AnswerEvaluation(
                score=fraction,
                feedback=result.feedback,
                awarded_points=awarded,
                source="server",
                evaluated_at=self._clock(),
            )
            try:
                await self._answers.set_evaluation(record, evaluation)
            except Exception:
                logger.warning("Could not store evaluation for %s", record.id, exc_info=True)
            return {
                "sessionId": record.session_id,
                "score": fraction,
                "feedback": result.feedback,
                "awardedPoints": awarded,
            }

        outcome.evaluations = list(await asyncio.gather(*(settle(record) for record in records)))

    async def _award(
        self,
        outcome: RevealOutcome,
        record: AnswerRecord,
        fraction: float,
        points: int,
        timing: _Timing,
    ) -> int:
        award = decayed_award(
            points,
            fraction,
            record.created_at,
            timing.started_at,
            timing.duration_seconds,
            timing.time_decay,
        )
        if award <= 0:
            return 0
        try:
            await self._participants.increment_score(
                outcome.class_id, record.session_id, award, self._clock()
            )
        except Exception:
            logger.warning("Award of %d to %s failed", award, record.session_id, exc_info=True)
            return 0
        outcome.awards[record.session_id] = award
        return award
