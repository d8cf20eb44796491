import asyncio
import json

from conftest import RecordingConnection

from quiz_live.server.message_router import MessageRouter

QUESTION = {
    "classId": "C1",
    "id": "q1",
    "title": "Pick A",
    "options": ["A", "B"],
    "correctAnswer": "A",
    "duration": 30,
}


def _send(router, connection, **message):
    return router.handle_message(connection, json.dumps(message))


def test_late_joining_student_gets_remaining_duration(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        await engine.launch_challenge(dict(QUESTION))
        clock.advance(20)

        student = RecordingConnection("student")
        router.open(student)
        await _send(router, student, type="subscribe", classId="C1", sessionId="s1", role="student")

        assert student.of_type("subscribed") == [{"type": "subscribed", "classId": "C1", "role": "student"}]
        catch_up = student.of_type("question-launched")
        assert len(catch_up) == 1
        assert catch_up[0]["question"]["duration"] == 10
        assert catch_up[0]["question"]["id"] == "q1"

    asyncio.run(scenario())


def test_teachers_get_no_catch_up(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        await engine.launch_challenge(dict(QUESTION))
        teacher = RecordingConnection("teacher")
        router.open(teacher)
        await _send(router, teacher, type="subscribe", classId="C1", role="teacher")

        assert [frame["type"] for frame in teacher.frames] == ["subscribed"]
        assert await engine.list_participants("C1", True) == []

    asyncio.run(scenario())


def test_student_reveal_is_forbidden_but_connection_stays_usable(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        await engine.launch_challenge(dict(QUESTION))
        student = RecordingConnection("student")
        router.open(student)
        await _send(router, student, type="subscribe", classId="C1", sessionId="s1")

        await _send(router, student, type="reveal", classId="C1", questionId="q1", correctAnswer="A")

        assert student.of_type("error") == [{"type": "error", "message": "forbidden"}]
        assert engine.board.get("C1") is not None

        await _send(router, student, type="answer", classId="C1", sessionId="s1", questionId="q1", answer="A")
        assert student.of_type("answers-count")[-1]["total"] == 1

    asyncio.run(scenario())


def test_teacher_reveal_broadcasts_results(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        await engine.launch_challenge(dict(QUESTION))
        teacher, student = RecordingConnection("teacher"), RecordingConnection("student")
        for connection in (teacher, student):
            router.open(connection)
        await _send(router, teacher, type="subscribe", classId="C1", role="teacher")
        await _send(router, student, type="subscribe", classId="C1", sessionId="s1", displayName="Ana")
        await _send(router, student, type="answer", classId="C1", sessionId="s1", questionId="q1", answer="A")

        await _send(router, teacher, type="reveal", classId="C1", questionId="q1", correctAnswer="A", points=100)

        results = student.of_type("question-results")
        assert results[0]["correctSessions"] == ["s1"]
        standings = student.of_type("participants-updated")[-1]["participants"]
        assert standings[0]["displayName"] == "Ana"
        assert standings[0]["score"] == 100

    asyncio.run(scenario())


def test_malformed_and_incomplete_messages_are_dropped(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        connection = RecordingConnection()
        router.open(connection)

        await router.handle_message(connection, "{not json")
        await router.handle_message(connection, "[]")
        await _send(router, connection, type="dance", classId="C1")
        await _send(router, connection, type="answer", classId="C1", sessionId="s1")
        await _send(router, connection, type="ping", classId="C1")

        assert connection.frames == []
        assert await engine.list_answers("C1") == []

    asyncio.run(scenario())


def test_socket_close_disconnects_student_everywhere(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        student = RecordingConnection()
        router.open(student)
        await _send(router, student, type="subscribe", classId="C1", sessionId="s1")
        await _send(router, student, type="subscribe", classId="C2", sessionId="s1")

        await router.handle_close(student)

        for class_id in ("C1", "C2"):
            assert await engine.list_participants(class_id) == []
            assert len(await engine.list_participants(class_id, True)) == 1
        assert engine.registry.get_connection_count() == 0

    asyncio.run(scenario())


def test_unsubscribe_marks_student_disconnected(clock, engine):
    async def scenario():
        router = MessageRouter(engine)
        student = RecordingConnection()
        router.open(student)
        await _send(router, student, type="subscribe", classId="C1", sessionId="s1")

        await _send(router, student, type="unsubscribe", classId="C1")

        student.frames.clear()
        assert engine.registry.publish({"type": "class-reset"}, "C1") == 0
        assert student.frames == []
        assert await engine.list_participants("C1") == []

    asyncio.run(scenario())
