"""Unit tests for Feed and StateFeed."""

import gc
import threading
import unittest
from unittest.mock import MagicMock

from accessory_kit.channel.feeds import Feed, StateFeed
from accessory_kit.models import ConnectionState


class TestFeed(unittest.TestCase):

    def test_callbacks_receive_items(self):
        feed = Feed()
        callback = MagicMock()
        feed.subscribe(callback)
        feed.publish("one")
        feed.publish("two")
        self.assertEqual([c[0][0] for c in callback.call_args_list], ["one", "two"])

    def test_unsubscribe(self):
        feed = Feed()
        callback = MagicMock()
        unsubscribe = feed.subscribe(callback)
        unsubscribe()
        unsubscribe()
        feed.publish("ignored")
        callback.assert_not_called()

    def test_callback_error_does_not_stop_others(self):
        feed = Feed()
        second = MagicMock()
        feed.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        feed.subscribe(second)
        feed.publish("item")
        second.assert_called_once_with("item")

    def test_iterators_are_independent(self):
        feed = Feed()
        first = feed.iterate(timeout=0.05)
        second = feed.iterate(timeout=0.05)
        feed.publish(1)
        feed.publish(2)
        self.assertEqual(list(first), [1, 2])
        self.assertEqual(list(second), [1, 2])

    def test_iterator_registered_before_first_next(self):
        feed = Feed()
        items = feed.iterate(timeout=0.05)
        feed.publish("early")
        self.assertEqual(list(items), ["early"])

    def test_close_ends_iterators(self):
        feed = Feed()
        items = feed.iterate()
        result = []
        consumer = threading.Thread(target=lambda: result.extend(items))
        consumer.start()
        feed.publish("last")
        feed.close()
        consumer.join(timeout=2.0)
        self.assertFalse(consumer.is_alive())
        self.assertEqual(result, ["last"])

    def test_dropped_iterator_unsubscribes(self):
        """Iterators that are never advanced do not keep collecting items."""
        feed = Feed()
        for _ in range(100):
            feed.iterate()
        gc.collect()
        self.assertEqual(feed.subscriber_count, 0)

        for i in range(1000):
            feed.publish(i)
        self.assertEqual(feed.subscriber_count, 0)

    def test_exhausted_and_closed_iterators_unsubscribe(self):
        feed = Feed()
        timed_out = feed.iterate(timeout=0.01)
        closed = feed.iterate()
        self.assertEqual(feed.subscriber_count, 2)

        self.assertEqual(list(timed_out), [])
        closed.close()
        closed.close()

        self.assertEqual(feed.subscriber_count, 0)
        self.assertEqual(list(closed), [])

    def test_closed_feed(self):
        feed = Feed()
        callback = MagicMock()
        feed.subscribe(callback)
        feed.close()
        feed.close()
        feed.publish("dropped")
        callback.assert_not_called()
        self.assertTrue(feed.closed)
        self.assertEqual(list(feed.iterate()), [])


class TestStateFeed(unittest.TestCase):

    def test_subscribe_replays_current(self):
        feed = StateFeed(ConnectionState.DISCONNECTED)
        callback = MagicMock()
        feed.subscribe(callback)
        callback.assert_called_once_with(ConnectionState.DISCONNECTED)

    def test_repeats_skipped(self):
        feed = StateFeed(ConnectionState.DISCONNECTED)
        states = []
        feed.subscribe(states.append)
        self.assertTrue(feed.publish(ConnectionState.SEARCHING))
        self.assertFalse(feed.publish(ConnectionState.SEARCHING))
        self.assertTrue(feed.publish(ConnectionState.CONNECTED))
        self.assertEqual(states, [
            ConnectionState.DISCONNECTED,
            ConnectionState.SEARCHING,
            ConnectionState.CONNECTED,
        ])
        self.assertEqual(feed.current, ConnectionState.CONNECTED)

    def test_iterator_starts_with_current(self):
        feed = StateFeed(ConnectionState.SEARCHING)
        items = feed.iterate(timeout=0.05)
        feed.publish(ConnectionState.CONNECTED)
        self.assertEqual(list(items), [ConnectionState.SEARCHING, ConnectionState.CONNECTED])


if __name__ == '__main__':
    unittest.main()
