# File: src/parktrack/domain/models.py
"""
Domain Models for the ParkTrack parking core

This module contains:
1. Enums: subscription tiers, session status, credential intent, validation status
2. Value Objects: Credential, Charge, DriverProfile (immutable)
3. Entities: ParkingSession (identity and lifecycle)

Timestamps on entities are timezone-aware UTC datetimes. Credential issue
timestamps stay as integer epoch milliseconds because that is what travels on
the wire and what the security hash is computed over.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid

from .exceptions import SessionNotActiveError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def to_epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class SubscriptionTier(Enum):
    """
    Driver subscription tier
    Attached to a driver account and read by the billing calculator
    """
    NORMAL = "normal"
    GOLD = "gold"
    PLATINUM = "platinum"

    @property
    def has_free_hour(self) -> bool:
        return self in (SubscriptionTier.GOLD, SubscriptionTier.PLATINUM)

    def __str__(self) -> str:
        return self.value.title()


class SessionStatus(Enum):
    """Parking session status"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class CredentialIntent(Enum):
    """What the driver asked the QR code to do"""
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class ValidationStatus(Enum):
    """
    Outcome of credential validation
    Checks run in a fixed order: format, hash, expiry
    """
    VALID = "valid"
    EXPIRED = "expired"
    INVALID_HASH = "invalid_hash"
    INVALID_FORMAT = "invalid_format"

    @property
    def is_valid(self) -> bool:
        return self is ValidationStatus.VALID


class ConflictAction(Enum):
    """Resolutions an operator may pick for a session conflict"""
    VIEW_SESSION = "view_session"
    FORCE_NEW_ENTRY = "force_new_entry"
    CANCEL = "cancel"


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class Credential:
    """
    Value Object: decoded scan payload

    The security hash ties the credential to (driver_id, issued_at, secret).
    Vehicle metadata is only present in the newest wire format.
    """
    driver_id: str
    vehicle_number: str
    issued_at: int  # epoch milliseconds
    security_hash: str
    intent: CredentialIntent = CredentialIntent.ENTRY
    vehicle_id: str = ""
    vehicle_model: str = ""
    vehicle_color: str = ""

    def age_millis(self, now: datetime) -> int:
        return to_epoch_millis(now) - self.issued_at

    def remaining_seconds(self, now: datetime, validity_seconds: int) -> int:
        """Seconds left before the credential expires, never negative"""
        remaining = (validity_seconds * 1000 - self.age_millis(now)) // 1000
        return max(0, int(remaining))


@dataclass(frozen=True)
class Charge:
    """
    Value Object: billed amount for one completed session

    Carries everything an auditor needs to re-derive the amount: the duration,
    the tier and the hourly rate that was in effect when the session closed.
    """
    amount: Decimal
    tier: SubscriptionTier
    duration_minutes: int
    chargeable_hours: int
    hourly_rate: Decimal
    free_hours_applied: bool = False

    def __post_init__(self):
        if self.amount < Decimal("0"):
            raise ValueError("Charge amount cannot be negative")
        if self.duration_minutes < 0:
            raise ValueError("Duration cannot be negative")

    def format(self, currency: str = "Rs") -> str:
        return f"{currency} {self.amount:.2f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": float(self.amount),
            "tier": self.tier.value,
            "duration_minutes": self.duration_minutes,
            "chargeable_hours": self.chargeable_hours,
            "hourly_rate": float(self.hourly_rate),
            "free_hours_applied": self.free_hours_applied,
        }


@dataclass(frozen=True)
class DriverProfile:
    """Value Object: the driver account fields the core reads"""
    driver_id: str
    display_name: str
    tier: SubscriptionTier = SubscriptionTier.NORMAL


# ============================================================================
# ENTITIES
# ============================================================================

@dataclass
class ParkingSession:
    """
    Entity: one physical parking occupancy

    Business rules:
    - COMPLETED if and only if exit_time is set and duration_minutes is final
    - entry_time <= exit_time
    """
    driver_id: str
    vehicle_number: str
    entry_time: datetime
    gate_location: str = ""
    driver_name: str = ""
    operator_id: str = ""
    operator_name: str = ""
    credential_used: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    exit_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    duration_minutes: int = 0
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.driver_id:
            raise ValueError("Session must belong to a driver")
        if (self.status is SessionStatus.COMPLETED) != (self.exit_time is not None):
            raise ValueError("Completed sessions must have an exit time and active ones must not")

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE and self.exit_time is None

    def elapsed_seconds(self, moment: datetime) -> float:
        return (moment - self.entry_time).total_seconds()

    def complete(self, exit_time: datetime) -> int:
        """
        Close the session at exit_time
        Returns: final duration in whole minutes
        """
        if not self.is_active:
            raise SessionNotActiveError(f"Session {self.id} is not active")
        if exit_time < self.entry_time:
            raise ValueError("Exit time cannot precede entry time")

        self.exit_time = exit_time
        self.duration_minutes = int(self.elapsed_seconds(exit_time) // 60)
        self.status = SessionStatus.COMPLETED
        return self.duration_minutes

    def copy(self) -> "ParkingSession":
        return replace(self)

    def summary(self) -> str:
        duration = f"{self.duration_minutes} min" if self.duration_minutes > 0 else "Ongoing"
        return f"Vehicle: {self.vehicle_number} | Duration: {duration} | Gate: {self.gate_location}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "driver_name": self.driver_name,
            "vehicle_number": self.vehicle_number,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "gate_location": self.gate_location,
            "operator_id": self.operator_id,
            "operator_name": self.operator_name,
            "status": self.status.value,
            "duration_minutes": self.duration_minutes,
            "credential_used": self.credential_used,
        }
