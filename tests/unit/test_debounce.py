# File: tests/unit/test_debounce.py
"""
Unit tests for per-driver scan debouncing
"""

import threading
import unittest

from parktrack.application.debounce import ScanDebouncer


class FakeMonotonic:
    """Manually advanced monotonic clock"""

    def __init__(self, start=100.0):
        self.value = start

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


class TestScanDebouncer(unittest.TestCase):
    """Acceptance policy"""

    def setUp(self):
        self.clock = FakeMonotonic()
        self.debouncer = ScanDebouncer(debounce_seconds=3.0, clock=self.clock)

    def test_first_scan_always_accepted(self):
        self.assertTrue(self.debouncer.should_process("driver-1", None))

    def test_repeat_scan_with_same_status_rejected(self):
        self.assertTrue(self.debouncer.should_process("driver-1", None))
        self.clock.advance(1)
        self.assertFalse(self.debouncer.should_process("driver-1", None))

    def test_status_change_overrides_window(self):
        self.assertTrue(self.debouncer.should_process("driver-1", None))
        self.assertTrue(self.debouncer.should_process("driver-1", "ACTIVE"))

    def test_accepted_once_interval_elapsed(self):
        self.assertTrue(self.debouncer.should_process("driver-1", "ACTIVE"))
        self.clock.advance(3.0)
        self.assertTrue(self.debouncer.should_process("driver-1", "ACTIVE"))

    def test_rejection_does_not_move_the_window(self):
        self.assertTrue(self.debouncer.should_process("driver-1", None))
        self.clock.advance(2)
        self.assertFalse(self.debouncer.should_process("driver-1", None))
        self.clock.advance(1)
        # Three seconds after the accepted scan, not one after the rejected one
        self.assertTrue(self.debouncer.should_process("driver-1", None))

    def test_drivers_are_independent(self):
        self.assertTrue(self.debouncer.should_process("driver-1", None))
        self.assertTrue(self.debouncer.should_process("driver-2", None))
        self.assertFalse(self.debouncer.should_process("driver-1", None))

    def test_time_until_next_scan(self):
        self.assertEqual(self.debouncer.time_until_next_scan("driver-1"), 0.0)
        self.debouncer.should_process("driver-1", None)
        self.clock.advance(1)
        self.assertAlmostEqual(self.debouncer.time_until_next_scan("driver-1"), 2.0)
        self.clock.advance(5)
        self.assertEqual(self.debouncer.time_until_next_scan("driver-1"), 0.0)

    def test_reset_forgets_driver(self):
        self.debouncer.should_process("driver-1", None)
        self.debouncer.reset("driver-1")
        self.assertTrue(self.debouncer.should_process("driver-1", None))

    def test_reset_unknown_driver_is_noop(self):
        self.debouncer.reset("nobody")
        self.assertTrue(self.debouncer.should_process("nobody", None))

    def test_clear_all(self):
        self.debouncer.should_process("driver-1", None)
        self.debouncer.should_process("driver-2", None)
        self.debouncer.clear_all()
        self.assertTrue(self.debouncer.should_process("driver-1", None))
        self.assertTrue(self.debouncer.should_process("driver-2", None))

    def test_negative_interval_rejected(self):
        with self.assertRaises(ValueError):
            ScanDebouncer(debounce_seconds=-1)
        with self.assertRaises(ValueError):
            ScanDebouncer(prune_threshold=0)


class TestScanDebouncerRecords(unittest.TestCase):
    """Per-driver records do not accumulate"""

    def setUp(self):
        self.clock = FakeMonotonic()
        self.debouncer = ScanDebouncer(debounce_seconds=3.0, clock=self.clock)

    def test_reset_drops_the_record(self):
        self.debouncer.should_process("driver-1", None)
        self.debouncer.should_process("driver-2", None)
        self.assertEqual(self.debouncer.tracked_drivers, 2)

        self.debouncer.reset("driver-1")

        self.assertEqual(self.debouncer.tracked_drivers, 1)
        self.assertFalse(self.debouncer.should_process("driver-2", None))

    def test_clear_all_drops_every_record(self):
        for index in range(5):
            self.debouncer.should_process(f"driver-{index}", None)
        self.debouncer.clear_all()
        self.assertEqual(self.debouncer.tracked_drivers, 0)

    def test_prune_drops_only_idle_drivers(self):
        self.debouncer.should_process("driver-1", None)
        self.clock.advance(2)
        self.debouncer.should_process("driver-2", None)
        self.clock.advance(1)

        self.assertEqual(self.debouncer.prune(), 1)

        self.assertEqual(self.debouncer.tracked_drivers, 1)
        # driver-2 is still inside its window
        self.assertFalse(self.debouncer.should_process("driver-2", None))
        self.assertTrue(self.debouncer.should_process("driver-1", None))

    def test_registry_pruned_when_threshold_reached(self):
        debouncer = ScanDebouncer(debounce_seconds=3.0, clock=self.clock, prune_threshold=2)
        debouncer.should_process("driver-1", None)
        debouncer.should_process("driver-2", None)
        self.clock.advance(5)

        debouncer.should_process("driver-3", None)

        self.assertEqual(debouncer.tracked_drivers, 1)

    def test_busy_registry_keeps_recent_drivers(self):
        debouncer = ScanDebouncer(debounce_seconds=3.0, clock=self.clock, prune_threshold=2)
        debouncer.should_process("driver-1", None)
        debouncer.should_process("driver-2", None)

        debouncer.should_process("driver-3", None)

        self.assertEqual(debouncer.tracked_drivers, 3)
        self.assertFalse(debouncer.should_process("driver-1", None))

    def test_many_drivers_stay_bounded(self):
        debouncer = ScanDebouncer(debounce_seconds=3.0, clock=self.clock, prune_threshold=50)
        for index in range(1000):
            debouncer.should_process(f"driver-{index}", None)
            self.clock.advance(1)
        self.assertLessEqual(debouncer.tracked_drivers, 50)


class TestScanDebouncerConcurrency(unittest.TestCase):
    """Concurrent callers for the same driver"""

    def _race(self, debouncer, driver_ids, workers=32):
        barrier = threading.Barrier(workers)
        results = []
        results_lock = threading.Lock()

        def scan(index):
            barrier.wait()
            accepted = debouncer.should_process(driver_ids[index % len(driver_ids)], None)
            with results_lock:
                results.append((driver_ids[index % len(driver_ids)], accepted))

        threads = [threading.Thread(target=scan, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results

    def test_simultaneous_scans_accept_exactly_one(self):
        debouncer = ScanDebouncer(debounce_seconds=60)
        results = self._race(debouncer, ["driver-1"])
        self.assertEqual(sum(1 for _, accepted in results if accepted), 1)

    def test_one_acceptance_per_driver(self):
        debouncer = ScanDebouncer(debounce_seconds=60)
        drivers = ["driver-1", "driver-2", "driver-3", "driver-4"]
        results = self._race(debouncer, drivers)
        for driver_id in drivers:
            accepted = [ok for d, ok in results if d == driver_id and ok]
            self.assertEqual(len(accepted), 1, driver_id)

    def test_reset_while_scanning(self):
        debouncer = ScanDebouncer(debounce_seconds=60, prune_threshold=4)
        errors = []

        def scan_loop(worker):
            try:
                for i in range(200):
                    debouncer.should_process(f"driver-{(worker + i) % 8}", None)
            except Exception as e:
                errors.append(e)

        def reset_loop():
            for i in range(200):
                debouncer.reset(f"driver-{i % 8}")

        threads = [threading.Thread(target=scan_loop, args=(w,)) for w in range(4)]
        threads.append(threading.Thread(target=reset_loop))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertLessEqual(debouncer.tracked_drivers, 8)


if __name__ == '__main__':
    unittest.main()
