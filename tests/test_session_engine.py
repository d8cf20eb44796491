import asyncio

import pytest

from conftest import FakeClock, RecordingConnection, ScriptedEvaluator, make_engine

from quiz_live.core.errors import EvaluatorError, SessionStateError, ValidationError
from quiz_live.core.models import (
    ActiveQuestion,
    EvaluationMode,
    McqScoring,
    QuestionDefinition,
    RedFlagsScoring,
)

MCQ = {"classId": "C1", "id": "q1", "title": "Pick A", "options": ["A", "B"], "correctAnswer": "A", "duration": 30}


def test_question_documents_resolve_scoring_variants():
    legacy = QuestionDefinition.from_document(
        {"id": "q", "title": "t", "payload": {"evaluation": "redflags", "correctAnswer": ["x", "y"]}}
    )
    assert legacy.scoring == RedFlagsScoring(expected_flags=("x", "y"))
    assert "correctAnswer" not in legacy.public_payload()

    prompt = QuestionDefinition.from_document({"id": "p", "title": "t", "evaluation": "prompt"})
    assert prompt.mode is EvaluationMode.OPEN
    assert prompt.scoring.kind == "prompt"

    plain = QuestionDefinition.from_document({"id": "m", "title": "t", "correctAnswer": 3})
    assert plain.scoring == McqScoring(correct_answer="3")
    assert QuestionDefinition.from_document(plain.to_document()) == plain


@pytest.mark.parametrize(
    "document",
    [
        {"title": "no id"},
        {"id": "q", "title": "   "},
        {"id": "q", "title": "t", "duration": "soon"},
        {"id": "q", "title": "t", "points": -1},
        {"id": "q", "title": "t", "evaluation": "essay"},
    ],
)
def test_bad_question_documents_are_rejected(document):
    with pytest.raises(ValidationError):
        QuestionDefinition.from_document(document)


def test_remaining_seconds_never_goes_negative(clock):
    question = QuestionDefinition.from_document(dict(MCQ))
    active = ActiveQuestion(class_id="C1", question=question, started_at=clock(), public={"duration": 30})
    clock.advance(12.7)
    assert active.catch_up_payload(clock())["duration"] == 18
    clock.advance(60)
    assert active.remaining_seconds(clock()) == 0


def test_concurrent_reveals_of_one_question_settle_once():
    class SlowEvaluator(ScriptedEvaluator):
        async def evaluate(self, question, answer):
            await asyncio.sleep(0)
            return await super().evaluate(question, answer)

    async def scenario():
        evaluator = SlowEvaluator(0.0)
        engine = make_engine(FakeClock(), evaluator)
        await engine.launch_challenge({"classId": "C1", "id": "q-open", "title": "Explain", "evaluation": "open"})
        await engine.submit_answer("C1", "s1", "q-open", "words")

        results = await asyncio.gather(
            engine.reveal("C1", "q-open"),
            engine.reveal("C1", "q-open"),
            return_exceptions=True,
        )

        errors = [result for result in results if isinstance(result, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], SessionStateError)
        assert len(evaluator.calls) == 2

    asyncio.run(scenario())


def test_auto_reveal_when_everyone_answered():
    async def scenario():
        engine = make_engine(FakeClock(), auto_reveal_on_all_answered=True)
        watcher = RecordingConnection()
        engine.registry.subscribe(watcher, "C1")
        await engine.presence.handle_subscribe("C1", "s1")
        await engine.presence.handle_subscribe("C1", "s2")
        await engine.launch_challenge(dict(MCQ))

        await engine.submit_answer("C1", "s1", "q1", "A")
        assert watcher.of_type("question-results") == []
        await engine.submit_answer("C1", "s2", "q1", "B")

        results = watcher.of_type("question-results")
        assert len(results) == 1
        assert results[0]["correctSessions"] == ["s1"]
        assert engine.board.get("C1") is None

    asyncio.run(scenario())


def test_auto_reveal_skips_questions_without_authored_answer():
    async def scenario():
        engine = make_engine(FakeClock(), auto_reveal_on_all_answered=True)
        await engine.presence.handle_subscribe("C1", "s1")
        await engine.launch_challenge({"classId": "C1", "id": "q2", "title": "Poll", "options": ["x", "y"]})
        await engine.submit_answer("C1", "s1", "q2", "x")
        assert engine.board.get("C1") is not None

    asyncio.run(scenario())


def test_auto_reveal_on_timeout():
    async def scenario():
        engine = make_engine(FakeClock(), auto_reveal_on_timeout=True)
        watcher = RecordingConnection()
        engine.registry.subscribe(watcher, "C1")
        await engine.launch_challenge(dict(MCQ, duration=1))
        await engine.submit_answer("C1", "s1", "q1", "A")

        await asyncio.sleep(1.2)

        assert len(watcher.of_type("question-results")) == 1
        assert engine.board.get("C1") is None
        await engine.close()

    asyncio.run(scenario())


def test_teacher_reveal_cancels_the_timer():
    async def scenario():
        engine = make_engine(FakeClock(), auto_reveal_on_timeout=True)
        watcher = RecordingConnection()
        engine.registry.subscribe(watcher, "C1")
        await engine.launch_challenge(dict(MCQ, duration=1))
        await engine.reveal("C1", "q1")

        await asyncio.sleep(1.2)

        assert len(watcher.of_type("question-results")) == 1

    asyncio.run(scenario())


def test_evaluate_without_evaluator_raises(engine):
    question = QuestionDefinition.from_document({"id": "q", "title": "t", "evaluation": "open"})
    with pytest.raises(EvaluatorError):
        asyncio.run(engine.evaluate(question, "x"))
