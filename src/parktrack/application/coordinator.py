# File: src/parktrack/application/coordinator.py
"""
Application Service: parking operation coordinator

Orchestrates one scan event end to end:
1. Decode and validate the credential (once)
2. Look up the driver profile and the driver's active session
3. Debounce on (driver, current session status)
4. Entry: conflict check, optional forced close, create the session
   Exit: identity and duration checks, charge, complete the session
5. Publish a domain event and return a typed result

The coordinator keeps no session state of its own: the store is the single
source of truth. Rule violations come back as failed results carrying the
typed error; store failures propagate unchanged.
"""

from typing import Callable, Optional
from datetime import datetime
import logging

from ..config import ParkTrackSettings
from ..domain.conflicts import SessionConflictResolver
from ..domain.credentials import CredentialCodec, error_for_status
from ..domain.exceptions import (
    ConflictError, DriverMismatchError, DuplicateScanError, ImplausibleDurationError,
    NoActiveSessionError, ParkTrackError, SessionNotActiveError, SessionNotFoundError,
    UnknownDriverError
)
from ..domain.formatting import format_duration
from ..domain.models import (
    Credential, CredentialIntent, DriverProfile, ParkingSession, utc_now
)
from ..domain.pricing import BillingCalculator, RateConfiguration
from ..infrastructure.messaging import DomainEvent, EventBus, EventType
from ..infrastructure.repositories import DriverDirectory, SessionStore
from .debounce import ScanDebouncer
from .dtos import ChargeDTO, ManualExitRequestDTO, OperationResultDTO, ScanRequestDTO


ACTIVE_SESSION_MESSAGE = "Driver already has an active parking session. Exit first."


class ParkingOperationCoordinator:
    """
    Stateless orchestrator over the session store

    Collaborators are injected so every policy (secret, validity window,
    debounce interval, rate table) can be swapped per deployment or test.
    """

    def __init__(
        self,
        store: SessionStore,
        drivers: DriverDirectory,
        codec: Optional[CredentialCodec] = None,
        debouncer: Optional[ScanDebouncer] = None,
        resolver: Optional[SessionConflictResolver] = None,
        calculator: Optional[BillingCalculator] = None,
        settings: Optional[ParkTrackSettings] = None,
        rates: Optional[RateConfiguration] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.settings = settings or ParkTrackSettings()
        self.store = store
        self.drivers = drivers
        self.codec = codec or CredentialCodec(
            secret=self.settings.qr_secret,
            validity_seconds=self.settings.credential_validity_seconds,
            clock=clock
        )
        self.debouncer = debouncer or ScanDebouncer(self.settings.debounce_seconds)
        self.resolver = resolver or SessionConflictResolver(clock=clock)
        self.calculator = calculator or BillingCalculator()
        self.rates = rates or RateConfiguration()
        self.event_bus = event_bus
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    # ========================================================================
    # SCAN PROCESSING
    # ========================================================================

    async def process_scan(
        self,
        request: ScanRequestDTO,
        on_accepted: Optional[Callable[[str], None]] = None
    ) -> OperationResultDTO:
        """
        Process one scanned credential

        Args:
            request: the raw scan plus gate and operator context
            on_accepted: called with the driver id as soon as the debouncer
                accepts the scan, before any store mutation

        Returns: success or a failed result carrying the typed error
        Raises: StoreError when the store fails
        """
        now = self._clock()
        status, credential = self.codec.validate_payload(request.raw_payload, now)
        if not status.is_valid:
            driver_id = credential.driver_id if credential else None
            self.logger.info(f"Scan rejected at gate {request.gate_location!r}: {status.value}")
            return await self._reject(error_for_status(status), driver_id=driver_id)

        operation = "exit" if credential.intent is CredentialIntent.EXIT else "entry"

        driver = await self.drivers.get_driver(credential.driver_id)
        if driver is None:
            return await self._reject(UnknownDriverError(), operation, credential.driver_id)

        active = await self.store.get_active_session_for_driver(credential.driver_id)
        status_label = active.status.value if active else None

        if not self.debouncer.should_process(credential.driver_id, status_label):
            return await self._reject(DuplicateScanError(), operation, credential.driver_id)

        if on_accepted is not None:
            on_accepted(credential.driver_id)

        self.logger.info(
            f"Processing {operation} for driver {credential.driver_id} "
            f"vehicle {credential.vehicle_number} at gate {request.gate_location!r}"
        )

        if credential.intent is CredentialIntent.EXIT:
            return await self._process_exit(credential, driver, active, now)
        return await self._process_entry(request, credential, driver, active, now)

    async def _process_entry(
        self,
        request: ScanRequestDTO,
        credential: Credential,
        driver: DriverProfile,
        active: Optional[ParkingSession],
        now: datetime
    ) -> OperationResultDTO:
        if active is not None:
            conflict = self.resolver.detect_conflict(
                active, credential.driver_id, credential.vehicle_number
            )
            if not request.force_new_entry:
                message = conflict.message if conflict.has_conflict else ACTIVE_SESSION_MESSAGE
                options = [label for label, _ in self.resolver.resolution_options(conflict)]
                return await self._reject(
                    ConflictError(message, conflict=conflict),
                    "entry",
                    credential.driver_id,
                    session_id=active.id,
                    resolution_options=options,
                )

        session = ParkingSession(
            driver_id=credential.driver_id,
            vehicle_number=credential.vehicle_number,
            entry_time=now,
            gate_location=request.gate_location,
            driver_name=driver.display_name,
            operator_id=request.operator_id,
            operator_name=request.operator_name,
            credential_used=request.raw_payload,
            created_at=now,
        )

        closed_charge = None
        if active is None:
            session_id = await self.store.create_session(session)
        else:
            # Forced entry: bill the stale session as-is (no plausibility check),
            # then close it and open the new one in a single store operation
            stale_minutes = max(0, int(active.elapsed_seconds(now) // 60))
            closed_charge = self.calculator.build_charge(stale_minutes, driver.tier, self.rates)
            session_id = await self.store.replace_active_session(active.id, now, session)

            self.logger.warning(
                f"Force-closed session {active.id} for driver {credential.driver_id} "
                f"after {stale_minutes} min, charge {closed_charge.amount} "
                f"(operator {request.operator_id!r})"
            )
            await self._publish(EventType.SESSION_FORCE_CLOSED, credential.driver_id, active.id, {
                "operator_id": request.operator_id,
                "gate_location": request.gate_location,
                "replaced_by": session_id,
                "duration_minutes": stale_minutes,
                "charge": closed_charge.to_dict(),
            })

        self.logger.info(f"Entry recorded: session {session_id} for driver {credential.driver_id}")
        await self._publish(EventType.SESSION_STARTED, credential.driver_id, session_id, {
            "vehicle_number": credential.vehicle_number,
            "gate_location": request.gate_location,
        })
        return OperationResultDTO(
            success=True,
            operation="entry",
            session_id=session_id,
            driver_id=credential.driver_id,
            vehicle_number=credential.vehicle_number,
            closed_session_id=active.id if active else None,
            closed_session_charge=ChargeDTO.from_charge(closed_charge) if closed_charge else None,
            message=f"Entry recorded for {driver.display_name or credential.driver_id}",
        )

    async def _process_exit(
        self,
        credential: Credential,
        driver: DriverProfile,
        active: Optional[ParkingSession],
        now: datetime
    ) -> OperationResultDTO:
        if active is None:
            return await self._reject(NoActiveSessionError(), "exit", credential.driver_id)

        # The store is an external collaborator; never close a session it
        # hands back for a different driver
        if active.driver_id != credential.driver_id:
            self.logger.error(
                f"Store returned session {active.id} of driver {active.driver_id} "
                f"for exit of driver {credential.driver_id}"
            )
            return await self._reject(DriverMismatchError(), "exit", credential.driver_id)

        return await self._complete(active, driver, now, "exit")

    # ========================================================================
    # MANUAL EXIT
    # ========================================================================

    async def manual_exit(self, request: ManualExitRequestDTO) -> OperationResultDTO:
        """
        Complete a session by id without a credential
        Raises: StoreError when the store fails
        """
        now = self._clock()
        session = await self.store.get_session_by_id(request.session_id)
        if session is None:
            return await self._reject(
                SessionNotFoundError(), "manual_exit", session_id=request.session_id
            )
        if not session.is_active:
            return await self._reject(
                SessionNotActiveError(), "manual_exit", session.driver_id, session_id=session.id
            )

        driver = await self.drivers.get_driver(session.driver_id)
        if driver is None:
            return await self._reject(
                UnknownDriverError(), "manual_exit", session.driver_id, session_id=session.id
            )

        self.logger.info(f"Manual exit of session {session.id} by operator {request.operator_id!r}")
        return await self._complete(session, driver, now, "manual_exit")

    # ========================================================================
    # HELPERS
    # ========================================================================

    def check_duration(self, session: ParkingSession, now: datetime) -> Optional[ImplausibleDurationError]:
        """Returns: an error when the elapsed time is outside the plausible range"""
        elapsed = session.elapsed_seconds(now)
        if elapsed < self.settings.min_session_seconds or elapsed > self.settings.max_session_seconds:
            return ImplausibleDurationError(elapsed_seconds=elapsed)
        return None

    async def _complete(
        self,
        session: ParkingSession,
        driver: DriverProfile,
        now: datetime,
        operation: str
    ) -> OperationResultDTO:
        duration_error = self.check_duration(session, now)
        if duration_error is not None:
            self.logger.warning(
                f"Implausible duration for session {session.id}: "
                f"{duration_error.elapsed_seconds:.0f}s, flagged for review"
            )
            return await self._reject(duration_error, operation, session.driver_id, session_id=session.id)

        duration_minutes = int(session.elapsed_seconds(now) // 60)
        charge = self.calculator.build_charge(duration_minutes, driver.tier, self.rates)

        await self.store.complete_session(session.id, now)

        self.logger.info(
            f"Exit recorded: session {session.id}, {duration_minutes} min, charge {charge.amount}"
        )
        await self._publish(EventType.SESSION_COMPLETED, session.driver_id, session.id, {
            "operation": operation,
            "duration_minutes": duration_minutes,
            "charge": charge.to_dict(),
        })
        return OperationResultDTO(
            success=True,
            operation=operation,
            session_id=session.id,
            driver_id=session.driver_id,
            vehicle_number=session.vehicle_number,
            charge=ChargeDTO.from_charge(charge),
            message=f"Exit recorded. Duration: {format_duration(duration_minutes)}. Charge: {charge.format()}",
        )

    async def _reject(
        self,
        error: ParkTrackError,
        operation: Optional[str] = None,
        driver_id: Optional[str] = None,
        **kwargs
    ) -> OperationResultDTO:
        self.logger.info(f"Rejected {operation or 'scan'} for driver {driver_id}: {error.code}")
        await self._publish(EventType.SCAN_REJECTED, driver_id, kwargs.get("session_id"), {
            "operation": operation,
            "rejection_code": error.code,
            "message": error.message,
        })
        return OperationResultDTO.rejected(error, operation, driver_id, **kwargs)

    async def _publish(self, event_type: EventType, driver_id: Optional[str], session_id: Optional[str], data):
        if self.event_bus is None:
            return
        await self.event_bus.publish_async(
            DomainEvent(event_type=event_type, driver_id=driver_id, session_id=session_id, data=data)
        )
