import json
import threading

from wellness.realtime import RealtimeHub, format_sse, hub, matches


def _parse(chunk):
    fields = dict(line.split(": ", 1) for line in chunk.strip().split("\n"))
    return fields["event"], json.loads(fields["data"])


def test_format_sse():
    chunk = format_sse({"id": "abc", "type": "task.created", "data": {"id": 1}})
    assert chunk == 'id: abc\nevent: task.created\ndata: {"id": 1}\n\n'


def test_stream_starts_with_connected_event():
    realtime = RealtimeHub()
    connection = realtime.connect(1)
    stream = realtime.stream(connection.id, heartbeat_seconds=0.01)
    event_type, data = _parse(next(stream))
    assert event_type == "connected"
    assert data["connection_id"] == connection.id

    realtime.publish(1, "task.created", {"id": 7})
    event_type, data = _parse(next(stream))
    assert (event_type, data) == ("task.created", {"id": 7})

    event_type, _ = _parse(next(stream))
    assert event_type == "heartbeat"
    stream.close()
    assert realtime.get(connection.id) is None


def test_publish_is_scoped_to_user():
    realtime = RealtimeHub()
    mine = realtime.connect(1)
    other = realtime.connect(2)
    assert realtime.publish(1, "task.updated", {}) == 1
    assert mine.queue.qsize() == 1
    assert other.queue.qsize() == 0
    assert realtime.broadcast("system.notice", {}) == 2


def test_subscriptions_filter_events():
    realtime = RealtimeHub()
    connection = realtime.connect(1, subscriptions=["badge.*"])
    assert realtime.publish(1, "task.created", {}) == 0
    assert realtime.publish(1, "badge.unlocked", {}) == 1
    assert realtime.subscribe(connection.id, ["task.created"]) == ["badge.*", "task.created"]
    assert realtime.publish(1, "task.created", {}) == 1
    assert realtime.unsubscribe(connection.id, ["badge.*"]) == ["task.created"]
    assert realtime.publish(1, "badge.unlocked", {}) == 0
    assert realtime.subscribe("missing", ["x"]) is None


def test_full_queue_drops_connection():
    realtime = RealtimeHub()
    slow = realtime.connect(1, maxsize=2)
    realtime.publish(1, "a", {})
    realtime.publish(1, "b", {})
    assert realtime.publish(1, "c", {}) == 0
    assert realtime.get(slow.id) is None
    assert slow.closed.is_set()
    assert realtime.stats()["connections_dropped"] == 1
    assert realtime.user_connection_count(1) == 0


def test_disconnect_and_stats():
    realtime = RealtimeHub()
    first = realtime.connect(1)
    realtime.connect(1)
    realtime.connect(2)
    stats = realtime.stats()
    assert stats["total_connections"] == 3
    assert stats["total_users"] == 2
    assert realtime.disconnect(first.id) is True
    assert realtime.disconnect(first.id) is False
    assert realtime.user_connection_count(1) == 1


def test_sse_endpoint_opens_connection(client, auth):
    response = client.get("/api/realtime/sse", headers=auth)
    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    connection_id = response.headers["X-Connection-ID"]
    assert hub.get(connection_id) is not None
    response.close()


def test_sse_endpoint_accepts_query_token(client, register):
    headers, _ = register()
    token = headers["Authorization"].split(" ", 1)[1]
    response = client.get(f"/api/realtime/sse?token={token}&events=task.*")
    assert response.status_code == 200
    connection = hub.get(response.headers["X-Connection-ID"])
    assert connection.subscriptions == {"task.*"}
    response.close()
    assert client.get("/api/realtime/sse").status_code == 401


def test_subscribe_endpoint(client, register):
    owner, owner_user = register()
    other, _ = register()
    connection = hub.connect(owner_user["id"])

    response = client.post("/api/realtime/subscribe", headers=owner,
                           json={"connection_id": connection.id, "event_types": ["task.*"]})
    assert response.status_code == 200
    assert response.get_json()["subscriptions"] == ["task.*"]

    assert client.post("/api/realtime/subscribe", headers=other,
                       json={"connection_id": connection.id, "event_types": ["x"]}).status_code == 403
    assert client.post("/api/realtime/subscribe", headers=owner,
                       json={"connection_id": "nope", "event_types": ["x"]}).status_code == 404
    assert client.post("/api/realtime/subscribe", headers=owner,
                       json={"connection_id": connection.id, "event_types": []}).status_code == 400

    response = client.post("/api/realtime/unsubscribe", headers=owner,
                           json={"connection_id": connection.id, "event_types": "task.*"})
    assert response.get_json()["subscriptions"] == []


def test_task_events_reach_connection(client, register):
    headers, user = register()
    connection = hub.connect(user["id"], subscriptions=["task.*"])
    client.post("/api/tasks", headers=headers, json={"title": "Live"})
    event = connection.queue.get_nowait()
    assert event["type"] == "task.created"
    assert event["data"]["title"] == "Live"


def test_stats_endpoint(client, register):
    headers, user = register()
    hub.connect(user["id"])
    stats = client.get("/api/realtime/stats", headers=headers).get_json()
    assert stats["user_connections"] == 1
    assert stats["total_connections"] >= 1


def test_matches():
    assert matches(frozenset(), "task.created")
    assert matches({"task.created"}, "task.created")
    assert matches({"task.*"}, "task.deleted")
    assert not matches({"task.*"}, "tasks.created")
    assert not matches({"badge.unlocked"}, "task.created")


def test_publish_while_subscriptions_change():
    realtime = RealtimeHub()
    connection = realtime.connect(1, subscriptions=["task.created"], maxsize=1000)
    errors = []

    def toggle():
        try:
            for n in range(500):
                realtime.subscribe(connection.id, [f"custom.{n}"])
                realtime.unsubscribe(connection.id, [f"custom.{n}"])
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    worker = threading.Thread(target=toggle)
    worker.start()
    for _ in range(400):
        realtime.publish(1, "task.created", {})
        realtime.broadcast("badge.unlocked", {})
    worker.join()

    assert errors == []
    assert realtime.get(connection.id) is connection
    assert connection.queue.qsize() == 400
