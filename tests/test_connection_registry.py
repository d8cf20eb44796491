from conftest import FailingConnection, RecordingConnection

from quiz_live.core.services.connection_registry import ConnectionRegistry


def test_failing_send_does_not_stop_siblings():
    registry = ConnectionRegistry()
    first, broken, second = RecordingConnection("a"), FailingConnection("b"), RecordingConnection("c")
    for connection in (first, broken, second):
        registry.subscribe(connection, "C1")

    delivered = registry.publish({"type": "answers-count", "total": 1}, "C1")

    assert delivered == 2
    assert first.frames == [{"type": "answers-count", "total": 1}]
    assert second.frames == [{"type": "answers-count", "total": 1}]


def test_publish_is_scoped_to_the_class():
    registry = ConnectionRegistry()
    in_class, elsewhere = RecordingConnection("in"), RecordingConnection("out")
    registry.subscribe(in_class, "C1")
    registry.subscribe(elsewhere, "C2")

    registry.publish({"type": "class-reset", "classId": "C1"}, "C1")

    assert len(in_class.frames) == 1
    assert elsewhere.frames == []


def test_publish_without_class_reaches_every_connection():
    registry = ConnectionRegistry()
    idle, subscribed = RecordingConnection("idle"), RecordingConnection("sub")
    registry.register(idle)
    registry.subscribe(subscribed, "C1")

    assert registry.publish({"type": "announcement"}) == 2
    assert idle.frames and subscribed.frames


def test_unregister_cleans_both_maps():
    registry = ConnectionRegistry()
    connection = RecordingConnection()
    registry.subscribe(connection, "C1")
    registry.subscribe(connection, "C2")

    class_ids = registry.unregister(connection)

    assert class_ids == {"C1", "C2"}
    assert registry.publish({"type": "class-reset"}, "C1") == 0
    assert registry.publish({"type": "class-reset"}, "C2") == 0
    assert registry.get_connection_count() == 0


def test_unsubscribe_keeps_other_classes():
    registry = ConnectionRegistry()
    connection = RecordingConnection()
    registry.subscribe(connection, "C1")
    registry.subscribe(connection, "C2")

    registry.unsubscribe(connection, "C1")

    assert registry.publish({"type": "class-reset"}, "C1") == 0
    assert registry.publish({"type": "class-reset"}, "C2") == 1
    assert registry.unregister(connection) == {"C2"}
