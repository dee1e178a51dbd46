# File: tests/integration/test_dispatcher.py
"""
Integration tests for concurrent scan dispatch and superseded-scan cancellation
"""

import asyncio
import unittest

from parktrack.application.coordinator import ParkingOperationCoordinator
from parktrack.application.debounce import ScanDebouncer
from parktrack.application.dispatcher import ScanDispatcher
from parktrack.application.dtos import ScanRequestDTO
from parktrack.domain.credentials import CredentialCodec
from parktrack.domain.exceptions import DuplicateScanError
from parktrack.domain.models import DriverProfile, SubscriptionTier
from parktrack.infrastructure.repositories import InMemoryDriverDirectory, InMemorySessionStore


class SlowStore(InMemorySessionStore):
    """Holds the first create until released"""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.create_calls = 0

    async def create_session(self, session):
        self.create_calls += 1
        if self.create_calls == 1:
            await self.release.wait()
        return await super().create_session(session)


class TestScanDispatcher(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.store = SlowStore()
        self.drivers = InMemoryDriverDirectory([
            DriverProfile("driver-1", "Asha", SubscriptionTier.GOLD),
            DriverProfile("driver-2", "Ravi", SubscriptionTier.NORMAL),
        ])
        self.codec = CredentialCodec()

    def dispatcher_with(self, debounce_seconds):
        coordinator = ParkingOperationCoordinator(
            store=self.store,
            drivers=self.drivers,
            codec=self.codec,
            debouncer=ScanDebouncer(debounce_seconds),
        )
        return ScanDispatcher(coordinator)

    def request(self, driver_id):
        credential = self.codec.issue(driver_id, "KA01AB1234")
        return ScanRequestDTO(raw_payload=self.codec.encode(credential), gate_location="A")

    async def wait_for_first_create(self):
        for _ in range(100):
            if self.store.create_calls >= 1:
                return
            await asyncio.sleep(0)
        self.fail("first scan never reached the store")

    async def test_newer_scan_cancels_in_flight_scan(self):
        dispatcher = self.dispatcher_with(debounce_seconds=0)

        first = dispatcher.submit(self.request("driver-1"))
        await self.wait_for_first_create()
        self.assertIs(dispatcher.in_flight("driver-1"), first)

        second = dispatcher.submit(self.request("driver-1"))
        result = await second

        self.assertTrue(result.success)
        with self.assertRaises(asyncio.CancelledError):
            await first
        self.assertEqual(self.store.count(), 1)
        self.assertIsNone(dispatcher.in_flight("driver-1"))

    async def test_rejected_scan_does_not_cancel(self):
        dispatcher = self.dispatcher_with(debounce_seconds=60)

        first = dispatcher.submit(self.request("driver-1"))
        await self.wait_for_first_create()

        duplicate = await dispatcher.submit(self.request("driver-1"))
        self.assertIsInstance(duplicate.error, DuplicateScanError)
        self.assertFalse(first.done())

        self.store.release.set()
        result = await first
        self.assertTrue(result.success)

    async def test_other_drivers_unaffected(self):
        dispatcher = self.dispatcher_with(debounce_seconds=0)

        first = dispatcher.submit(self.request("driver-1"))
        await self.wait_for_first_create()

        other = await dispatcher.submit(self.request("driver-2"))
        self.assertTrue(other.success)
        self.assertFalse(first.cancelled())

        self.store.release.set()
        self.assertTrue((await first).success)
        self.assertEqual(dispatcher.pending, 0)

    async def test_shutdown_cancels_pending(self):
        dispatcher = self.dispatcher_with(debounce_seconds=0)
        task = dispatcher.submit(self.request("driver-1"))
        await self.wait_for_first_create()

        await dispatcher.shutdown()

        self.assertTrue(task.cancelled())
        self.assertEqual(dispatcher.pending, 0)


if __name__ == '__main__':
    unittest.main()
