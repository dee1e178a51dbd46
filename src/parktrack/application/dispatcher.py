# File: src/parktrack/application/dispatcher.py
"""
Scan dispatch onto the event loop

Every scan becomes its own asyncio task. When the debouncer accepts a newer
scan for a driver, any older scan for the same driver that is still waiting on
the store is cancelled: the newer scan supersedes it. The debouncer has already
recorded the acceptance by then, whatever happens to the cancelled store call.
"""

from typing import Dict, List, Optional, Set
import asyncio
import logging

from .coordinator import ParkingOperationCoordinator
from .dtos import OperationResultDTO, ScanRequestDTO


class ScanDispatcher:
    """Runs scans concurrently and cancels superseded ones"""

    def __init__(self, coordinator: ParkingOperationCoordinator):
        self.coordinator = coordinator
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(self.__class__.__name__)

    def submit(self, request: ScanRequestDTO) -> asyncio.Task:
        """Schedule a scan; must be called from inside the running event loop"""
        task = asyncio.get_running_loop().create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, request: ScanRequestDTO) -> OperationResultDTO:
        current = asyncio.current_task()

        def supersede(driver_id: str) -> None:
            previous = self._in_flight.get(driver_id)
            if previous is not None and previous is not current and not previous.done():
                self.logger.info(f"Cancelling superseded scan for driver {driver_id}")
                previous.cancel()
            self._in_flight[driver_id] = current

        try:
            return await self.coordinator.process_scan(request, on_accepted=supersede)
        finally:
            for driver_id, task in list(self._in_flight.items()):
                if task is current:
                    del self._in_flight[driver_id]

    def in_flight(self, driver_id: str) -> Optional[asyncio.Task]:
        return self._in_flight.get(driver_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> List[object]:
        """Wait for every submitted scan; results include exceptions and cancellations"""
        tasks = list(self._tasks)
        if not tasks:
            return []
        return await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel everything still running"""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
        self._in_flight.clear()
