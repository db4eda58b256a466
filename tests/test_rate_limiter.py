import threading
import time
import unittest

from autoposter.ai.rate_limiter import RateLimiter, RateLimiterCleared


class TestRateLimiter(unittest.TestCase):
    def test_returns_task_result(self):
        limiter = RateLimiter(max_concurrent=2, min_interval=0)
        self.assertEqual(limiter.submit(lambda a, b: a + b, 2, b=3), 5)

    def test_starts_are_spaced_by_min_interval(self):
        interval = 0.2
        limiter = RateLimiter(max_concurrent=3, min_interval=interval)
        starts = []
        lock = threading.Lock()

        def task():
            with lock:
                starts.append(time.monotonic())

        threads = [threading.Thread(target=limiter.submit, args=(task,)) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        starts.sort()
        self.assertEqual(len(starts), 3)
        for earlier, later in zip(starts, starts[1:]):
            self.assertGreaterEqual(later - earlier, interval - 0.02)

    def test_single_slot_spaces_three_starts(self):
        interval = 0.15
        limiter = RateLimiter(max_concurrent=1, min_interval=interval)
        starts = []

        def task():
            starts.append(time.monotonic())

        threads = [threading.Thread(target=limiter.submit, args=(task,)) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        self.assertEqual(len(starts), 3)
        for earlier, later in zip(starts, starts[1:]):
            self.assertGreaterEqual(later - earlier, interval - 0.02)
        self.assertGreaterEqual(starts[2] - starts[0], 2 * interval - 0.04)

    def test_injected_clock_and_sleep(self):
        now = [100.0]
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        limiter = RateLimiter(max_concurrent=1, min_interval=3.0, clock=lambda: now[0], sleep=sleep)
        starts = [limiter.submit(lambda: now[0]) for _ in range(3)]

        self.assertEqual(starts, [100.0, 103.0, 106.0])
        self.assertEqual(sleeps, [3.0, 3.0])

    def test_concurrency_is_bounded(self):
        limiter = RateLimiter(max_concurrent=2, min_interval=0)
        running = 0
        peak = 0
        lock = threading.Lock()

        def task():
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.05)
            with lock:
                running -= 1

        threads = [threading.Thread(target=limiter.submit, args=(task,)) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        self.assertEqual(peak, 2)
        self.assertEqual(limiter.get_status(), {"queue_length": 0, "active_count": 0})

    def test_tasks_start_in_submission_order(self):
        limiter = RateLimiter(max_concurrent=1, min_interval=0)
        order = []
        gate = threading.Event()

        def blocker():
            gate.wait(5)

        first = threading.Thread(target=limiter.submit, args=(blocker,))
        first.start()
        time.sleep(0.05)

        threads = []
        for i in range(4):
            t = threading.Thread(target=limiter.submit, args=(order.append, i))
            t.start()
            threads.append(t)
            # Give each submitter time to enqueue before the next one
            time.sleep(0.03)

        gate.set()
        first.join(5)
        for t in threads:
            t.join(5)
        self.assertEqual(order, [0, 1, 2, 3])

    def test_task_error_propagates_only_to_its_caller(self):
        limiter = RateLimiter(max_concurrent=1, min_interval=0)

        def boom():
            raise ValueError("bad task")

        with self.assertRaises(ValueError):
            limiter.submit(boom)
        self.assertEqual(limiter.submit(lambda: "ok"), "ok")

    def test_clear_rejects_queued_tasks(self):
        limiter = RateLimiter(max_concurrent=1, min_interval=0)
        gate = threading.Event()
        errors = []
        ran = []

        def queued():
            try:
                limiter.submit(ran.append, "queued")
            except RateLimiterCleared as e:
                errors.append(e)

        blocker = threading.Thread(target=limiter.submit, args=(gate.wait, 5))
        blocker.start()
        time.sleep(0.05)
        waiter = threading.Thread(target=queued)
        waiter.start()
        time.sleep(0.05)

        self.assertEqual(limiter.get_status(), {"queue_length": 1, "active_count": 1})
        self.assertEqual(limiter.clear(), 1)
        waiter.join(5)
        gate.set()
        blocker.join(5)

        self.assertEqual(len(errors), 1)
        self.assertEqual(ran, [])


if __name__ == "__main__":
    unittest.main()
