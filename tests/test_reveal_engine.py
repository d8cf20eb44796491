import asyncio

import pytest

from conftest import FailingEvaluator, FakeClock, RecordingConnection, ScriptedEvaluator, make_engine

from quiz_live.core.errors import ValidationError


def _mcq(class_id="C1", question_id="q1", **overrides):
    doc = {
        "classId": class_id,
        "id": question_id,
        "title": "Pick A",
        "options": ["A", "B", "C"],
        "correctAnswer": "A",
        "duration": 30,
        "points": 100,
    }
    doc.update(overrides)
    return doc


def test_correct_answer_at_five_seconds_earns_83(clock, engine):
    async def scenario():
        teacher = RecordingConnection("teacher")
        engine.registry.subscribe(teacher, "C1")
        await engine.launch_challenge(_mcq())
        clock.advance(5)
        await engine.submit_answer("C1", "s1", "q1", "A")
        await engine.submit_answer("C1", "s2", "q1", "B")

        outcome = await engine.reveal("C1", "q1", "A")

        assert outcome.awards == {"s1": 83}
        assert outcome.correct_sessions == ["s1"]
        assert outcome.distribution == {"A": 1, "B": 1}
        scores = {p.session_id: p.score for p in await engine.list_participants("C1", True)}
        assert scores == {"s1": 83}
        results = teacher.of_type("question-results")[0]
        assert results["correctSessions"] == ["s1"]
        assert "answers" not in results
        assert engine.board.get("C1") is None

    asyncio.run(scenario())


def test_distribution_sums_to_answer_rows(clock, engine):
    async def scenario():
        await engine.launch_challenge(_mcq())
        for index, value in enumerate(["A", "B", "A", "C", "A"]):
            await engine.submit_answer("C1", f"s{index}", "q1", value)
        await engine.submit_answer("C1", "s0", "q1", "C")

        outcome = await engine.reveal("C1", "q1", "A")

        assert sum(outcome.distribution.values()) == len(await engine.list_answers("C1", "q1")) == 5
        assert outcome.distribution == {"C": 2, "B": 1, "A": 2}

    asyncio.run(scenario())


def test_reveal_defaults_to_authored_answer(clock, engine):
    async def scenario():
        await engine.launch_challenge(_mcq())
        await engine.submit_answer("C1", "s1", "q1", "A")
        outcome = await engine.reveal("C1", "q1")
        assert outcome.awards == {"s1": 100}

    asyncio.run(scenario())


def test_mcq_reveal_without_any_answer_is_rejected(engine):
    with pytest.raises(ValidationError):
        asyncio.run(engine.reveal("C1", "unknown-question"))


def test_reveal_of_inactive_question_awards_nothing(clock, engine):
    async def scenario():
        await engine.submit_answer("C1", "s1", "q-old", "A")
        outcome = await engine.reveal("C1", "q-old", "A", points=100)
        assert outcome.correct_sessions == ["s1"]
        assert outcome.awards == {}

    asyncio.run(scenario())


def test_redflags_partial_overlap_earns_partial_points(clock, engine):
    async def scenario():
        await engine.launch_challenge(
            {
                "classId": "C1",
                "id": "q-flags",
                "title": "Spot the red flags",
                "options": ["no context", "clear format", "vague goal"],
                "evaluation": "redflags",
                "expectedFlags": ["no context", "vague goal"],
                "duration": 30,
                "points": 100,
            }
        )
        await engine.submit_answer("C1", "full", "q-flags", ["vague goal", "no context"])
        await engine.submit_answer("C1", "half", "q-flags", ["no context", "clear format"])
        await engine.submit_answer("C1", "none", "q-flags", ["clear format"])

        outcome = await engine.reveal("C1", "q-flags")

        assert outcome.correct_sessions == ["full"]
        assert outcome.awards == {"full": 100, "half": 50}

    asyncio.run(scenario())


def test_open_answers_score_the_same_for_80_and_0_8():
    async def run_with(score):
        clock = FakeClock()
        engine = make_engine(clock, ScriptedEvaluator(score))
        await engine.launch_challenge(
            {"classId": "C1", "id": "q-open", "title": "Explain", "evaluation": "open", "duration": 30}
        )
        clock.advance(5)
        await engine.submit_answer("C1", "s1", "q-open", "because")
        outcome = await engine.reveal("C1", "q-open")
        participants = await engine.list_participants("C1", True)
        return outcome, participants[0].score

    percent_outcome, percent_score = asyncio.run(run_with(80))
    fraction_outcome, fraction_score = asyncio.run(run_with(0.8))

    assert percent_score == fraction_score == 67
    assert percent_outcome.evaluations == fraction_outcome.evaluations
    assert percent_outcome.evaluations[0]["awardedPoints"] == 67
    # already awarded on submission, so reveal does not award again
    assert percent_outcome.awards == {}


def test_open_reveal_degrades_when_evaluator_fails():
    async def scenario():
        clock = FakeClock()
        engine = make_engine(clock, FailingEvaluator())
        teacher = RecordingConnection()
        engine.registry.subscribe(teacher, "C1")
        await engine.launch_challenge(
            {"classId": "C1", "id": "q-open", "title": "Explain", "evaluation": "open"}
        )
        await engine.submit_answer("C1", "s1", "q-open", "first")
        await engine.submit_answer("C1", "s2", "q-open", "second")

        outcome = await engine.reveal("C1", "q-open")

        assert [entry["feedback"] for entry in outcome.evaluations] == ["unavailable", "unavailable"]
        assert outcome.awards == {}
        results = teacher.of_type("question-results")[0]
        assert [row["sessionId"] for row in results["answers"]] == ["s1", "s2"]

    asyncio.run(scenario())


def test_award_failure_for_one_participant_spares_the_others(clock, engine):
    async def scenario():
        await engine.launch_challenge(_mcq())
        await engine.submit_answer("C1", "s1", "q1", "A")
        await engine.submit_answer("C1", "s2", "q1", "A")

        original = engine.repos.participants.increment_score

        async def flaky(class_id, session_id, delta, last_seen):
            if session_id == "s1":
                raise RuntimeError("write conflict")
            return await original(class_id, session_id, delta, last_seen)

        engine.repos.participants.increment_score = flaky
        outcome = await engine.reveal("C1", "q1")

        assert outcome.awards == {"s2": 100}
        assert outcome.correct_sessions == ["s1", "s2"]

    asyncio.run(scenario())
