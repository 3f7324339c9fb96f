import json
import logging
import queue
import threading
import time
import uuid

from flask import Response, current_app, jsonify, request

from . import app
from .auth import stream_token_required, token_required
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import iso, utcnow
from .validation import get_json

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, connection_id, user_id, subscriptions, maxsize):
        self.id = connection_id
        self.user_id = user_id
        self.subscriptions = set(subscriptions or ())
        self.queue = queue.Queue(maxsize=maxsize)
        self.closed = threading.Event()
        self.created_at = time.time()


def matches(subscriptions, event_type):
    """An empty subscription set receives every event; "x.*" matches any "x." prefix."""
    if not subscriptions:
        return True
    if event_type in subscriptions:
        return True
    return any(s.endswith(".*") and event_type.startswith(s[:-1]) for s in subscriptions)


def format_sse(event):
    lines = []
    if event.get("id"):
        lines.append(f"id: {event['id']}")
    lines.append(f"event: {event['type']}")
    lines.append(f"data: {json.dumps(event.get('data'), default=str)}")
    return "\n".join(lines) + "\n\n"


class RealtimeHub:
    """In-process publish/subscribe for Server-Sent Event connections.

    State lives in this process only; it is not shared between workers and
    is lost on restart.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._connections = {}
        self._by_user = {}
        self.events_published = 0
        self.connections_dropped = 0

    def connect(self, user_id, subscriptions=None, maxsize=100):
        connection = Connection(f"sse_{uuid.uuid4().hex}", user_id, subscriptions, maxsize)
        with self._lock:
            self._connections[connection.id] = connection
            self._by_user.setdefault(user_id, set()).add(connection.id)
            total = len(self._connections)
        logger.info(f"SSE connection {connection.id} opened for user {user_id} ({total} total)")
        return connection

    def disconnect(self, connection_id):
        with self._lock:
            connection = self._remove(connection_id)
        if connection is None:
            return False
        logger.info(f"SSE connection {connection_id} closed for user {connection.user_id}")
        return True

    def _remove(self, connection_id):
        # caller holds the lock
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        user_connections = self._by_user.get(connection.user_id)
        if user_connections is not None:
            user_connections.discard(connection_id)
            if not user_connections:
                del self._by_user[connection.user_id]
        connection.closed.set()
        try:
            connection.queue.put_nowait(None)
        except queue.Full:
            pass
        return connection

    def get(self, connection_id):
        with self._lock:
            return self._connections.get(connection_id)

    def subscribe(self, connection_id, event_types):
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return None
            connection.subscriptions.update(event_types)
            return sorted(connection.subscriptions)

    def unsubscribe(self, connection_id, event_types):
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return None
            connection.subscriptions.difference_update(event_types)
            return sorted(connection.subscriptions)

    def _deliver(self, targets, event):
        # targets pairs each connection with a snapshot of its subscriptions
        sent = 0
        dropped = []
        for connection, subscriptions in targets:
            if not matches(subscriptions, event["type"]):
                continue
            try:
                connection.queue.put_nowait(event)
                sent += 1
            except queue.Full:
                dropped.append(connection.id)
        if dropped:
            with self._lock:
                for connection_id in dropped:
                    self._remove(connection_id)
                self.connections_dropped += len(dropped)
            logger.warning(f"Dropped {len(dropped)} SSE connection(s) with full queues")
        return sent

    def _event(self, event_type, data):
        self.events_published += 1
        return {
            "id": uuid.uuid4().hex,
            "type": event_type,
            "data": data,
            "timestamp": iso(utcnow()),
        }

    def publish(self, user_id, event_type, data=None):
        """Queue an event for every connection of one user. Returns the delivery count."""
        with self._lock:
            targets = [(self._connections[cid], frozenset(self._connections[cid].subscriptions))
                       for cid in self._by_user.get(user_id, ())]
            event = self._event(event_type, data)
        sent = self._deliver(targets, event)
        logger.debug(f"Event {event_type} delivered to {sent} connection(s) of user {user_id}")
        return sent

    def broadcast(self, event_type, data=None):
        with self._lock:
            targets = [(c, frozenset(c.subscriptions)) for c in self._connections.values()]
            event = self._event(event_type, data)
        return self._deliver(targets, event)

    def stream(self, connection_id, heartbeat_seconds=10.0):
        connection = self.get(connection_id)
        if connection is None:
            return
        try:
            yield format_sse({"type": "connected", "data": {
                "connection_id": connection.id,
                "timestamp": iso(utcnow()),
            }})
            while not connection.closed.is_set():
                try:
                    event = connection.queue.get(timeout=heartbeat_seconds)
                except queue.Empty:
                    yield format_sse({"type": "heartbeat", "data": {"timestamp": iso(utcnow())}})
                    continue
                if event is None or connection.closed.is_set():
                    break
                yield format_sse(event)
        finally:
            self.disconnect(connection_id)

    def stats(self):
        with self._lock:
            return {
                "total_connections": len(self._connections),
                "total_users": len(self._by_user),
                "events_published": self.events_published,
                "connections_dropped": self.connections_dropped,
            }

    def user_connection_count(self, user_id):
        with self._lock:
            return len(self._by_user.get(user_id, ()))

    def reset(self):
        with self._lock:
            for connection_id in list(self._connections):
                self._remove(connection_id)
            self.events_published = 0
            self.connections_dropped = 0


hub = RealtimeHub()


def publish_event(user_id, event_type, data=None):
    try:
        return hub.publish(user_id, event_type, data)
    except Exception as e:
        logger.error(f"Failed to publish {event_type} for user {user_id}: {str(e)}")
        return 0


def _event_types(value):
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError("event_types must be a list of strings")
    types = [item.strip() for item in value if item.strip()]
    if not types:
        raise ValidationError("event_types must not be empty")
    return types


def _own_connection(user, connection_id):
    connection = hub.get(connection_id)
    if connection is None:
        raise NotFoundError("Connection not found")
    if connection.user_id != user.id:
        logger.error(f"User {user.id} tried to modify connection {connection_id}")
        raise ForbiddenError("Unauthorized")
    return connection


@app.route("/api/realtime/sse", methods=["GET"])
@stream_token_required
def sse_stream(user):
    events = request.args.get("events")
    subscriptions = _event_types(events) if events else None
    connection = hub.connect(user.id, subscriptions, current_app.config["SSE_QUEUE_SIZE"])
    heartbeat = current_app.config["SSE_HEARTBEAT_SECONDS"]
    return Response(hub.stream(connection.id, heartbeat), mimetype="text/event-stream", headers={
        "X-Connection-ID": connection.id,
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    })


@app.route("/api/realtime/subscribe", methods=["POST"])
@token_required
def subscribe(user):
    data = get_json()
    connection = _own_connection(user, data.get("connection_id"))
    subscriptions = hub.subscribe(connection.id, _event_types(data.get("event_types")))
    if subscriptions is None:
        raise NotFoundError("Connection not found")
    return jsonify({"connection_id": connection.id, "subscriptions": subscriptions}), 200


@app.route("/api/realtime/unsubscribe", methods=["POST"])
@token_required
def unsubscribe(user):
    data = get_json()
    connection = _own_connection(user, data.get("connection_id"))
    subscriptions = hub.unsubscribe(connection.id, _event_types(data.get("event_types")))
    if subscriptions is None:
        raise NotFoundError("Connection not found")
    return jsonify({"connection_id": connection.id, "subscriptions": subscriptions}), 200


@app.route("/api/realtime/stats", methods=["GET"])
@token_required
def realtime_stats(user):
    stats = hub.stats()
    stats["user_connections"] = hub.user_connection_count(user.id)
    return jsonify(stats), 200
