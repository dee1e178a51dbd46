# File: src/parktrack/domain/conflicts.py
"""
Session conflict detection

A conflict exists when a driver tries to enter with the same vehicle while
already holding an ACTIVE session. The resolver only classifies; closing the
stale session for a forced entry is the coordinator's job.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple
import logging

from .formatting import format_duration, relative_time
from .models import ConflictAction, ParkingSession, SessionStatus, utc_now


@dataclass(frozen=True)
class ConflictResult:
    """Result of conflict detection"""
    has_conflict: bool
    message: str = ""
    existing_session: Optional[ParkingSession] = None
    suggested_action: Optional[ConflictAction] = None


NO_CONFLICT = ConflictResult(has_conflict=False)


class SessionConflictResolver:
    """Detects whether a scan collides with the driver's open session"""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def has_active_session(session: Optional[ParkingSession]) -> bool:
        return session is not None and session.status is SessionStatus.ACTIVE

    def format_conflict_message(self, session: ParkingSession) -> str:
        since = relative_time(session.entry_time, self._clock())
        return f"{session.driver_name} is already parked at Gate {session.gate_location} since {since}"

    def parked_duration(self, session: ParkingSession) -> str:
        """How long the driver has been parked, e.g. "1h 20m" """
        minutes = int(session.elapsed_seconds(self._clock()) // 60)
        return format_duration(minutes)

    def detect_conflict(
        self,
        active_session: Optional[ParkingSession],
        driver_id: str,
        vehicle_number: str
    ) -> ConflictResult:
        if not self.has_active_session(active_session):
            return NO_CONFLICT
        if active_session.driver_id != driver_id:
            return NO_CONFLICT
        if active_session.vehicle_number != vehicle_number:
            return NO_CONFLICT

        self.logger.info(f"Driver {driver_id} already has active session {active_session.id}")
        return ConflictResult(
            has_conflict=True,
            message=self.format_conflict_message(active_session),
            existing_session=active_session,
            suggested_action=ConflictAction.FORCE_NEW_ENTRY,
        )

    @staticmethod
    def resolution_options(conflict: ConflictResult) -> List[Tuple[str, ConflictAction]]:
        if not conflict.has_conflict:
            return []
        return [
            ("View Active Session", ConflictAction.VIEW_SESSION),
            ("Create New Entry", ConflictAction.FORCE_NEW_ENTRY),
            ("Cancel", ConflictAction.CANCEL),
        ]
