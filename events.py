#events.py
"""Fan-out of game events to server-sent event streams.

Every open stream gets its own queue, so one client closing a connection
never cuts off another stream of the same user.
"""
import queue
import threading
import uuid


class EventHub:
    def __init__(self):
        self._queues = {}
        self._lock = threading.Lock()

    def connect(self):
        """Register a new stream; returns ``(connection_id, queue)``."""
        connection_id = uuid.uuid4().hex
        events = queue.Queue()
        with self._lock:
            self._queues[connection_id] = events
        return connection_id, events

    def disconnect(self, connection_id):
        with self._lock:
            self._queues.pop(connection_id, None)

    def broadcast(self, event_data):
        with self._lock:
            targets = list(self._queues.values())
        for events in targets:
            events.put(event_data)

    def __len__(self):
        with self._lock:
            return len(self._queues)
