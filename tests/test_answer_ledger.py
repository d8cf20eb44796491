import asyncio

import pytest

from conftest import FailingEvaluator, FakeClock, RecordingConnection, ScriptedEvaluator, make_engine

from quiz_live.core.errors import EvaluatorError, ValidationError

OPEN_QUESTION = {
    "classId": "C1",
    "id": "q-open",
    "title": "Why does the sky look blue?",
    "evaluation": "open",
    "duration": 30,
    "points": 100,
}


def test_resubmission_keeps_one_row_with_latest_value(engine):
    async def scenario():
        watcher = RecordingConnection()
        engine.registry.subscribe(watcher, "C1")

        await engine.submit_answer("C1", "s1", "q1", "A")
        await engine.submit_answer("C1", "s1", "q1", "B")

        rows = await engine.list_answers("C1", "q1")
        assert len(rows) == 1
        assert rows[0]["answer"] == "B"
        counts = watcher.of_type("answers-count")[-1]
        assert counts["total"] == 1
        assert counts["counts"] == {"B": 1}
        assert len(watcher.of_type("answers-updated")) == 2

    asyncio.run(scenario())


def test_missing_ids_are_rejected(engine):
    with pytest.raises(ValidationError):
        asyncio.run(engine.submit_answer("C1", "", "q1", "A"))


def test_client_evaluation_is_trusted_and_awarded_once():
    async def scenario():
        clock = FakeClock()
        evaluator = ScriptedEvaluator(0.1)
        engine = make_engine(clock, evaluator)
        await engine.launch_challenge(dict(OPEN_QUESTION))
        clock.advance(5)

        record = await engine.submit_answer(
            "C1", "s1", "q-open", "Rayleigh scattering", evaluation={"score": 100, "feedback": "great"}
        )
        assert record.evaluation.source == "client"
        assert record.evaluation.awarded_points == 83
        assert evaluator.calls == []

        clock.advance(5)
        again = await engine.submit_answer(
            "C1", "s1", "q-open", "Rayleigh scattering!", evaluation={"score": 100, "feedback": "great"}
        )
        assert again.evaluation.awarded_points == 83
        participants = await engine.list_participants("C1", include_disconnected=True)
        assert [p.score for p in participants] == [83]

    asyncio.run(scenario())


def test_server_evaluation_publishes_answer_evaluated():
    async def scenario():
        clock = FakeClock()
        engine = make_engine(clock, ScriptedEvaluator(0.5, "half right"))
        watcher = RecordingConnection()
        engine.registry.subscribe(watcher, "C1")
        await engine.launch_challenge(dict(OPEN_QUESTION))

        await engine.submit_answer("C1", "s1", "q-open", "light bends")

        evaluated = watcher.of_type("answer-evaluated")
        assert evaluated[0]["awardedPoints"] == 50
        assert evaluated[0]["source"] == "server"
        stored = await engine.list_answers("C1", "q-open", "s1")
        assert stored[0]["evaluation"]["feedback"] == "half right"

    asyncio.run(scenario())


def test_evaluator_failure_still_stores_the_answer():
    async def scenario():
        clock = FakeClock()
        engine = make_engine(clock, FailingEvaluator())
        await engine.launch_challenge(dict(OPEN_QUESTION))

        record = await engine.submit_answer("C1", "s1", "q-open", "no idea")

        assert record.evaluation is None
        stored = await engine.list_answers("C1", "q-open")
        assert stored[0]["answer"] == "no idea"
        assert "evaluation" not in stored[0]

    asyncio.run(scenario())


def test_answers_to_inactive_questions_are_not_evaluated():
    async def scenario():
        clock = FakeClock()
        evaluator = ScriptedEvaluator(1.0)
        engine = make_engine(clock, evaluator)
        await engine.launch_challenge(dict(OPEN_QUESTION))

        record = await engine.submit_answer("C1", "s1", "some-other-question", "text")

        assert record.evaluation is None
        assert evaluator.calls == []

    asyncio.run(scenario())


class _JudgeGoesOffline(ScriptedEvaluator):
    """Judges the first answer, then fails like an unreachable endpoint."""

    async def evaluate(self, question, answer):
        if self.calls:
            self.calls.append((question.id, answer))
            raise EvaluatorError("judge offline")
        return await super().evaluate(question, answer)


def test_awarded_evaluation_survives_resubmission_when_judge_fails():
    async def scenario():
        clock = FakeClock()
        evaluator = _JudgeGoesOffline(1.0, "spot on")
        engine = make_engine(clock, evaluator)
        await engine.launch_challenge(dict(OPEN_QUESTION))

        clock.advance(3)
        first = await engine.submit_answer("C1", "s1", "q-open", "Rayleigh scattering")
        assert first.evaluation.awarded_points == 90

        clock.advance(3)
        await engine.submit_answer("C1", "s1", "q-open", "Rayleigh scattering, mostly")
        stored = await engine.list_answers("C1", "q-open")
        assert stored[0]["answer"] == "Rayleigh scattering, mostly"
        assert stored[0]["evaluation"]["awardedPoints"] == 90

        outcome = await engine.reveal("C1", "q-open")

        assert outcome.awards == {}
        assert outcome.evaluations[0]["awardedPoints"] == 90
        participants = await engine.list_participants("C1", include_disconnected=True)
        assert [p.score for p in participants] == [90]
        assert len(evaluator.calls) == 2

    asyncio.run(scenario())
