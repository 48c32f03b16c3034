"""
Tests for the topic notification hub.
"""

import json
import unittest

from swarm_engine.core.notifications import NotificationHub


class TestNotificationHub(unittest.TestCase):
    """Tests for NotificationHub."""

    def setUp(self):
        self.hub = NotificationHub()
        self.frames = []
        self.client = self.hub.connect(send=self.frames.append)

    def test_only_subscribed_topics_are_delivered(self):
        self.hub.handle_client_message(self.client, '{"type": "subscribe", "topics": ["tasks"]}')

        self.assertEqual(self.hub.notify("tasks", "update", "t1"), 1)
        self.assertEqual(self.hub.notify("runs"), 0)
        self.assertEqual([json.loads(f) for f in self.frames], [
            {"topic": "tasks", "action": "update", "id": "t1"},
        ])

    def test_unsubscribe(self):
        self.hub.subscribe(self.client, ["tasks", "runs"])
        self.hub.handle_client_message(self.client, json.dumps({"type": "unsubscribe", "topics": ["tasks"]}))
        self.assertEqual(self.client.topics, {"runs"})

    def test_malformed_frames_are_ignored(self):
        for raw in ["not json", "[]", '{"type": "subscribe"}', '{"type": "subscribe", "topics": "tasks"}', None]:
            self.hub.handle_client_message(self.client, raw)
        self.assertEqual(self.client.topics, set())

    def test_failing_client_is_dropped(self):
        def broken(_frame):
            raise ConnectionError("socket closed")

        bad = self.hub.connect(send=broken, topics=["tasks"])
        self.hub.subscribe(self.client, ["tasks"])

        self.assertEqual(self.hub.notify("tasks"), 1)
        self.assertFalse(bad.connected)
        self.assertEqual(self.hub.client_count, 1)
        self.assertEqual(self.hub.get_statistics()["send_failures"], 1)

    def test_payload_event(self):
        self.hub.subscribe(self.client, ["status"])
        self.hub.notify_with_payload("status", {"running": 2})
        self.assertEqual(json.loads(self.frames[0]), {"topic": "status", "action": "event", "data": {"running": 2}})

    def test_disconnect(self):
        self.hub.subscribe(self.client, ["tasks"])
        self.hub.disconnect(self.client)
        self.assertEqual(self.hub.notify("tasks"), 0)
        self.assertEqual(self.hub.get_statistics()["connected_clients"], 0)


if __name__ == "__main__":
    unittest.main()
