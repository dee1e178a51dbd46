# File: src/parktrack/infrastructure/repositories.py
"""
Repository Pattern Implementation for parking sessions and driver profiles

The coordinator depends only on the abstract SessionStore and DriverDirectory
interfaces below. Stores must honour one invariant the core cannot enforce on
its own: at most one ACTIVE session per driver. ``create_session`` is therefore
a conditional create that raises ActiveSessionExistsError instead of writing a
second ACTIVE session.

Storage Implementations:
- InMemorySessionStore - for testing and single-process deployments
- SQLAlchemySessionStore - relational storage, blocking work run in the executor
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, TypeVar
from datetime import datetime, timezone
import asyncio
import functools
import logging

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..domain.exceptions import ActiveSessionExistsError, SessionNotActiveError, StoreError
from ..domain.models import DriverProfile, ParkingSession, SessionStatus

T = TypeVar('T')

ACTIVE_DRIVER_INDEX = 'uq_parking_sessions_active_driver'


# ============================================================================
# STORE INTERFACES
# ============================================================================

class SessionStore(ABC):
    """Asynchronous store of parking sessions; failures raise StoreError"""

    @abstractmethod
    async def create_session(self, session: ParkingSession) -> str:
        """Persist a new session, refusing a second ACTIVE one for the same driver"""
        pass

    @abstractmethod
    async def get_active_session_for_driver(self, driver_id: str) -> Optional[ParkingSession]:
        pass

    @abstractmethod
    async def get_session_by_id(self, session_id: str) -> Optional[ParkingSession]:
        pass

    @abstractmethod
    async def complete_session(self, session_id: str, exit_time: datetime) -> None:
        """Mark the session COMPLETED with its exit time and final duration"""
        pass

    @abstractmethod
    async def replace_active_session(
        self,
        stale_session_id: str,
        exit_time: datetime,
        new_session: ParkingSession
    ) -> str:
        """
        Complete the stale ACTIVE session and create new_session as one unit
        Either both writes land or neither does.
        """
        pass

    @abstractmethod
    async def get_all_active_sessions(self) -> List[ParkingSession]:
        pass

    @abstractmethod
    async def get_driver_sessions(self, driver_id: str, limit: int = 20) -> List[ParkingSession]:
        pass


class DriverDirectory(ABC):
    """Read access to driver accounts"""

    @abstractmethod
    async def get_driver(self, driver_id: str) -> Optional[DriverProfile]:
        pass


# ============================================================================
# IN-MEMORY IMPLEMENTATIONS
# ============================================================================

class InMemorySessionStore(SessionStore):
    """In-memory session store; returns copies so callers cannot mutate stored state"""

    def __init__(self):
        self._storage: Dict[str, ParkingSession] = {}
        self._lock = asyncio.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def _active_for(self, driver_id: str) -> Optional[ParkingSession]:
        for session in self._storage.values():
            if session.driver_id == driver_id and session.is_active:
                return session
        return None

    async def create_session(self, session: ParkingSession) -> str:
        async with self._lock:
            if session.id in self._storage:
                raise StoreError(f"Session {session.id} already exists")
            if session.is_active:
                existing = self._active_for(session.driver_id)
                if existing is not None:
                    raise ActiveSessionExistsError(
                        f"Driver {session.driver_id} already has active session {existing.id}"
                    )
            self._storage[session.id] = session.copy()
            self._logger.debug(f"Added session {session.id}")
            return session.id

    async def get_active_session_for_driver(self, driver_id: str) -> Optional[ParkingSession]:
        session = self._active_for(driver_id)
        return session.copy() if session else None

    async def get_session_by_id(self, session_id: str) -> Optional[ParkingSession]:
        session = self._storage.get(session_id)
        return session.copy() if session else None

    async def complete_session(self, session_id: str, exit_time: datetime) -> None:
        async with self._lock:
            session = self._storage.get(session_id)
            if session is None:
                raise StoreError(f"Session {session_id} not found")
            try:
                session.complete(exit_time)
            except (SessionNotActiveError, ValueError) as e:
                raise StoreError(str(e)) from e
            self._logger.debug(f"Completed session {session_id}")

    async def replace_active_session(
        self,
        stale_session_id: str,
        exit_time: datetime,
        new_session: ParkingSession
    ) -> str:
        async with self._lock:
            stale = self._storage.get(stale_session_id)
            if stale is None:
                raise StoreError(f"Session {stale_session_id} not found")
            if stale.driver_id != new_session.driver_id:
                raise StoreError(f"Session {stale_session_id} belongs to another driver")
            if new_session.id in self._storage:
                raise StoreError(f"Session {new_session.id} already exists")

            # Work on a copy; storage is only touched once every check has passed
            closed = stale.copy()
            try:
                closed.complete(exit_time)
            except (SessionNotActiveError, ValueError) as e:
                raise StoreError(str(e)) from e

            existing = self._active_for(new_session.driver_id)
            if existing is not None and existing.id != stale_session_id:
                raise ActiveSessionExistsError(
                    f"Driver {new_session.driver_id} already has active session {existing.id}"
                )

            self._storage[stale_session_id] = closed
            self._storage[new_session.id] = new_session.copy()
            self._logger.debug(f"Replaced session {stale_session_id} with {new_session.id}")
            return new_session.id

    async def get_all_active_sessions(self) -> List[ParkingSession]:
        active = [s.copy() for s in self._storage.values() if s.is_active]
        return sorted(active, key=lambda s: s.entry_time, reverse=True)

    async def get_driver_sessions(self, driver_id: str, limit: int = 20) -> List[ParkingSession]:
        sessions = [s.copy() for s in self._storage.values() if s.driver_id == driver_id]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions[:limit]

    def count(self) -> int:
        return len(self._storage)

    def clear(self):
        """Clear all data (for testing)"""
        self._storage.clear()


class InMemoryDriverDirectory(DriverDirectory):
    """In-memory driver directory"""

    def __init__(self, drivers: Optional[List[DriverProfile]] = None):
        self._drivers: Dict[str, DriverProfile] = {}
        for driver in drivers or []:
            self.add(driver)

    def add(self, driver: DriverProfile) -> DriverProfile:
        self._drivers[driver.driver_id] = driver
        return driver

    async def get_driver(self, driver_id: str) -> Optional[DriverProfile]:
        return self._drivers.get(driver_id)


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class ParkingSessionModel(Base):
    """SQLAlchemy model for ParkingSession"""
    __tablename__ = 'parking_sessions'

    id = Column(String(36), primary_key=True)
    driver_id = Column(String(64), nullable=False, index=True)
    driver_name = Column(String(120), default="")
    vehicle_number = Column(String(32), nullable=False)
    entry_time = Column(DateTime, nullable=False)
    exit_time = Column(DateTime, nullable=True)
    gate_location = Column(String(64), default="")
    operator_id = Column(String(64), default="")
    operator_name = Column(String(120), default="")
    status = Column(String(16), nullable=False, default=SessionStatus.ACTIVE.value)
    duration_minutes = Column(Integer, nullable=False, default=0)
    credential_used = Column(Text, default="")
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        # One ACTIVE session per driver, enforced by the database
        Index(
            ACTIVE_DRIVER_INDEX,
            'driver_id',
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(engine)


class Mapper:
    """Maps between domain sessions and ORM rows (timestamps stored as naive UTC)"""

    @staticmethod
    def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @staticmethod
    def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    @classmethod
    def session_to_orm(cls, session: ParkingSession) -> ParkingSessionModel:
        return ParkingSessionModel(
            id=session.id,
            driver_id=session.driver_id,
            driver_name=session.driver_name,
            vehicle_number=session.vehicle_number,
            entry_time=cls._to_db_time(session.entry_time),
            exit_time=cls._to_db_time(session.exit_time),
            gate_location=session.gate_location,
            operator_id=session.operator_id,
            operator_name=session.operator_name,
            status=session.status.value,
            duration_minutes=session.duration_minutes,
            credential_used=session.credential_used,
            created_at=cls._to_db_time(session.created_at),
        )

    @classmethod
    def session_to_domain(cls, model: ParkingSessionModel) -> ParkingSession:
        return ParkingSession(
            id=model.id,
            driver_id=model.driver_id,
            driver_name=model.driver_name or "",
            vehicle_number=model.vehicle_number,
            entry_time=cls._from_db_time(model.entry_time),
            exit_time=cls._from_db_time(model.exit_time),
            gate_location=model.gate_location or "",
            operator_id=model.operator_id or "",
            operator_name=model.operator_name or "",
            status=SessionStatus(model.status),
            duration_minutes=model.duration_minutes or 0,
            credential_used=model.credential_used or "",
            created_at=cls._from_db_time(model.created_at),
        )


# ============================================================================
# SQLALCHEMY STORE
# ============================================================================

class SQLAlchemySessionStore(SessionStore):
    """
    Relational session store

    Each call runs in its own transaction on the default executor so the event
    loop never blocks on the database.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    async def _run(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _active_query(self, driver_id: str):
        return select(ParkingSessionModel).where(
            ParkingSessionModel.driver_id == driver_id,
            ParkingSessionModel.status == SessionStatus.ACTIVE.value,
        )

    @staticmethod
    def _is_active_driver_violation(error: SQLAlchemyIntegrityError) -> bool:
        """True when the one-ACTIVE-per-driver index, not some other constraint, refused the write"""
        constraint = getattr(getattr(error.orig, 'diag', None), 'constraint_name', None)
        if constraint is not None:
            return constraint == ACTIVE_DRIVER_INDEX
        # SQLite names the columns rather than the index
        message = str(error.orig)
        return ACTIVE_DRIVER_INDEX in message or 'parking_sessions.driver_id' in message

    def _integrity_error(self, error: SQLAlchemyIntegrityError, session: ParkingSession) -> StoreError:
        self._logger.error(f"Integrity error writing session {session.id}: {error}")
        if self._is_active_driver_violation(error):
            return ActiveSessionExistsError(f"Driver {session.driver_id} already has an active session")
        return StoreError(f"Failed to write session {session.id}: {error.orig}")

    def _ensure_no_active(self, db: Session, driver_id: str, ignore_id: Optional[str] = None) -> None:
        for existing in db.execute(self._active_query(driver_id)).scalars():
            if existing.id != ignore_id:
                raise ActiveSessionExistsError(
                    f"Driver {driver_id} already has active session {existing.id}"
                )

    @staticmethod
    def _close_model(model: ParkingSessionModel, exit_time: datetime) -> None:
        session = Mapper.session_to_domain(model)
        try:
            session.complete(exit_time)
        except (SessionNotActiveError, ValueError) as e:
            raise StoreError(str(e)) from e

        model.exit_time = Mapper._to_db_time(session.exit_time)
        model.status = session.status.value
        model.duration_minutes = session.duration_minutes

    # -- blocking implementations ---------------------------------------

    def _create(self, session: ParkingSession) -> str:
        try:
            with self._session_factory() as db, db.begin():
                if session.is_active:
                    self._ensure_no_active(db, session.driver_id)
                db.add(Mapper.session_to_orm(session))
            self._logger.debug(f"Added session: {session.id}")
            return session.id
        except SQLAlchemyIntegrityError as e:
            raise self._integrity_error(e, session) from e
        except SQLAlchemyError as e:
            self._logger.error(f"Database error adding session: {e}")
            raise StoreError(f"Failed to create session: {e}") from e

    def _get_active(self, driver_id: str) -> Optional[ParkingSession]:
        try:
            with self._session_factory() as db:
                model = db.execute(self._active_query(driver_id).limit(1)).scalars().first()
                return Mapper.session_to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reading active session for {driver_id}: {e}")
            raise StoreError(f"Failed to read active session: {e}") from e

    def _get(self, session_id: str) -> Optional[ParkingSession]:
        try:
            with self._session_factory() as db:
                model = db.get(ParkingSessionModel, session_id)
                return Mapper.session_to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting session {session_id}: {e}")
            raise StoreError(f"Failed to read session: {e}") from e

    def _complete(self, session_id: str, exit_time: datetime) -> None:
        try:
            with self._session_factory() as db, db.begin():
                model = db.get(ParkingSessionModel, session_id, with_for_update=True)
                if model is None:
                    raise StoreError(f"Session {session_id} not found")
                self._close_model(model, exit_time)
            self._logger.debug(f"Completed session: {session_id}")
        except SQLAlchemyError as e:
            self._logger.error(f"Database error completing session {session_id}: {e}")
            raise StoreError(f"Failed to complete session: {e}") from e

    def _replace(self, stale_session_id: str, exit_time: datetime, new_session: ParkingSession) -> str:
        try:
            with self._session_factory() as db, db.begin():
                model = db.get(ParkingSessionModel, stale_session_id, with_for_update=True)
                if model is None:
                    raise StoreError(f"Session {stale_session_id} not found")
                if model.driver_id != new_session.driver_id:
                    raise StoreError(f"Session {stale_session_id} belongs to another driver")

                self._close_model(model, exit_time)
                db.flush()
                self._ensure_no_active(db, new_session.driver_id)
                db.add(Mapper.session_to_orm(new_session))
            self._logger.debug(f"Replaced session {stale_session_id} with {new_session.id}")
            return new_session.id
        except SQLAlchemyIntegrityError as e:
            raise self._integrity_error(e, new_session) from e
        except SQLAlchemyError as e:
            self._logger.error(f"Database error replacing session {stale_session_id}: {e}")
            raise StoreError(f"Failed to replace session: {e}") from e

    def _list(self, query) -> List[ParkingSession]:
        try:
            with self._session_factory() as db:
                return [Mapper.session_to_domain(m) for m in db.execute(query).scalars().all()]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error listing sessions: {e}")
            raise StoreError(f"Failed to list sessions: {e}") from e

    # -- SessionStore ---------------------------------------------------

    async def create_session(self, session: ParkingSession) -> str:
        return await self._run(self._create, session)

    async def get_active_session_for_driver(self, driver_id: str) -> Optional[ParkingSession]:
        return await self._run(self._get_active, driver_id)

    async def get_session_by_id(self, session_id: str) -> Optional[ParkingSession]:
        return await self._run(self._get, session_id)

    async def complete_session(self, session_id: str, exit_time: datetime) -> None:
        await self._run(self._complete, session_id, exit_time)

    async def replace_active_session(
        self,
        stale_session_id: str,
        exit_time: datetime,
        new_session: ParkingSession
    ) -> str:
        return await self._run(self._replace, stale_session_id, exit_time, new_session)

    async def get_all_active_sessions(self) -> List[ParkingSession]:
        query = (
            select(ParkingSessionModel)
            .where(ParkingSessionModel.status == SessionStatus.ACTIVE.value)
            .order_by(ParkingSessionModel.entry_time.desc())
        )
        return await self._run(self._list, query)

    async def get_driver_sessions(self, driver_id: str, limit: int = 20) -> List[ParkingSession]:
        query = (
            select(ParkingSessionModel)
            .where(ParkingSessionModel.driver_id == driver_id)
            .order_by(ParkingSessionModel.created_at.desc())
            .limit(limit)
        )
        return await self._run(self._list, query)
