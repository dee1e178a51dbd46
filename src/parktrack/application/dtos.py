# File: src/parktrack/application/dtos.py
"""
Data Transfer Objects (DTOs) for the ParkTrack core

This module defines DTOs for data transfer between layers:
1. Input DTOs - scan requests from gate devices and manual exit requests
2. Output DTOs - the typed outcome of every operation, with the charge on exit

DTO Principles:
- Validation at creation
- No business logic, only data
- Serialization/deserialization support
"""

from typing import Any, Dict, List, Literal, Optional
from decimal import Decimal
import json

from pydantic import BaseModel, ConfigDict, Field

from ..domain.exceptions import ParkTrackError
from ..domain.models import Charge


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        """Create DTO from dictionary"""
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        """Create DTO from JSON string"""
        return cls(**json.loads(json_str))


# ============================================================================
# INPUT DTOs
# ============================================================================

class ScanRequestDTO(BaseDTO):
    """One QR scan captured at a gate"""
    raw_payload: str = Field(..., description="Credential string exactly as scanned")
    gate_location: str = ""
    operator_id: str = ""
    operator_name: str = ""
    force_new_entry: bool = Field(
        default=False,
        description="Operator chose to close a stale active session and start a new one"
    )


class ManualExitRequestDTO(BaseDTO):
    """Administrative exit without a credential"""
    session_id: str = Field(..., min_length=1)
    operator_id: str = ""


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class ChargeDTO(BaseDTO):
    """Charge computed on exit"""
    amount: Decimal
    tier: str
    duration_minutes: int = Field(..., ge=0)
    chargeable_hours: int = Field(..., ge=0)
    hourly_rate: Decimal
    free_hours_applied: bool = False

    @classmethod
    def from_charge(cls, charge: Charge) -> 'ChargeDTO':
        return cls(
            amount=charge.amount,
            tier=charge.tier.value,
            duration_minutes=charge.duration_minutes,
            chargeable_hours=charge.chargeable_hours,
            hourly_rate=charge.hourly_rate,
            free_hours_applied=charge.free_hours_applied,
        )


class OperationResultDTO(BaseDTO):
    """
    Outcome of a scan or manual exit

    A rejected operation carries the typed error in ``error`` (kept out of
    serialized output) and its stable code in ``rejection_code``.
    """
    success: bool
    operation: Optional[Literal["entry", "exit", "manual_exit"]] = None
    session_id: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_number: Optional[str] = None
    charge: Optional[ChargeDTO] = None
    closed_session_id: Optional[str] = None
    closed_session_charge: Optional[ChargeDTO] = Field(
        default=None,
        description="Charge for a stale session closed by a forced entry"
    )
    rejection_code: Optional[str] = None
    message: str = ""
    resolution_options: List[str] = Field(default_factory=list)
    error: Optional[ParkTrackError] = Field(default=None, exclude=True)

    @classmethod
    def rejected(
        cls,
        error: ParkTrackError,
        operation: Optional[str] = None,
        driver_id: Optional[str] = None,
        **kwargs
    ) -> 'OperationResultDTO':
        return cls(
            success=False,
            operation=operation,
            driver_id=driver_id,
            rejection_code=error.code,
            message=error.message,
            error=error,
            **kwargs
        )
