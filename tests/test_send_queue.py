"""Unit tests for SendQueue."""

import threading
import time
import unittest

from accessory_kit.channel.send_queue import SendQueue


class TestSendQueue(unittest.TestCase):

    def test_fifo(self):
        q = SendQueue()
        for frame in (b"a", b"b", b"c"):
            q.put(frame)
        self.assertEqual(len(q), 3)
        self.assertEqual([q.get(0), q.get(0), q.get(0)], [b"a", b"b", b"c"])
        self.assertEqual(q.size, 0)

    def test_get_times_out(self):
        q = SendQueue()
        start = time.monotonic()
        self.assertIsNone(q.get(timeout=0.05))
        self.assertGreaterEqual(time.monotonic() - start, 0.04)

    def test_get_wakes_on_put(self):
        q = SendQueue()
        result = []
        reader = threading.Thread(target=lambda: result.append(q.get(timeout=2.0)))
        reader.start()
        time.sleep(0.05)
        q.put(b"late")
        reader.join(timeout=2.0)
        self.assertEqual(result, [b"late"])

    def test_requeue_goes_to_tail(self):
        q = SendQueue()
        q.put(b"first")
        q.put(b"second")
        q.requeue(q.get(0))
        self.assertEqual([q.get(0), q.get(0)], [b"second", b"first"])
        self.assertEqual(q.requeue_count, 1)

    def test_unget_goes_to_head(self):
        q = SendQueue()
        q.put(b"first")
        q.put(b"second")
        q.unget(q.get(0))
        self.assertEqual(q.get(0), b"first")
        self.assertEqual(q.requeue_count, 0)

    def test_clear(self):
        q = SendQueue()
        q.put(b"a")
        q.put(b"b")
        self.assertEqual(q.clear(), 2)
        self.assertIsNone(q.get(0))


if __name__ == '__main__':
    unittest.main()
