# File: src/parktrack/domain/exceptions.py
"""
Error taxonomy for parking operations

Every rejection raised or returned by the core is a ParkTrackError subclass.
Each carries a stable ``code`` (for callers that branch on the failure) and an
``operator_message`` (the short text a gate operator is shown).

Hierarchy:
1. CredentialError - problems with the scanned QR payload
2. SessionRuleError - the scan is well-formed but breaks a session rule
3. StoreError - opaque failures from the external session store
"""

from typing import Optional


class ParkTrackError(Exception):
    """Base exception for all parking core errors"""

    code = "parktrack_error"
    operator_message = "Parking operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.operator_message)

    @property
    def message(self) -> str:
        return str(self)


# ============================================================================
# CREDENTIAL ERRORS
# ============================================================================

class CredentialError(ParkTrackError):
    """Base class for scanned credential failures (never retryable as-is)"""

    code = "credential_error"
    operator_message = "Invalid QR code"


class CredentialFormatError(CredentialError):
    """Malformed credential string: wrong marker, arity, or timestamp"""

    code = "invalid_format"
    operator_message = "Invalid QR code format"


class ExpiredCredentialError(CredentialError):
    """Credential validity window exceeded; the driver must show a fresh QR"""

    code = "expired"
    operator_message = "QR code has expired. Please ask the driver to generate a new QR code."


class IntegrityError(CredentialError):
    """Security hash mismatch: possible tampering or clock skew"""

    code = "invalid_hash"
    operator_message = "Invalid QR code. Security check failed. Please try again."


# ============================================================================
# SESSION RULE ERRORS
# ============================================================================

class SessionRuleError(ParkTrackError):
    """Base class for session state rule violations"""

    code = "session_rule"


class ConflictError(SessionRuleError):
    """Entry attempted while the driver already has an active session"""

    code = "conflict"
    operator_message = "Driver cannot enter. They already have an active parking session."

    def __init__(self, message: Optional[str] = None, conflict=None):
        super().__init__(message)
        self.conflict = conflict


class NoActiveSessionError(SessionRuleError):
    """Exit attempted with nothing open"""

    code = "no_active_session"
    operator_message = "Driver is not currently parked. Cannot record exit."


class SessionNotFoundError(SessionRuleError):
    code = "session_not_found"
    operator_message = "Session not found."


class SessionNotActiveError(SessionRuleError):
    code = "session_not_active"
    operator_message = "Session is not active."


class DriverMismatchError(SessionRuleError):
    """Credential driver identity does not own the active session"""

    code = "driver_mismatch"
    operator_message = "QR code doesn't match active session"


class ImplausibleDurationError(SessionRuleError):
    """Elapsed time outside the plausible range; flagged for manual review"""

    code = "implausible_duration"
    operator_message = "Invalid parking duration. Please check entry/exit times."

    def __init__(self, message: Optional[str] = None, elapsed_seconds: Optional[float] = None):
        super().__init__(message)
        self.elapsed_seconds = elapsed_seconds


class UnknownDriverError(SessionRuleError):
    code = "unknown_driver"
    operator_message = "Driver not found"


class DuplicateScanError(SessionRuleError):
    """Repeat scan suppressed by the debouncer"""

    code = "duplicate_scan"
    operator_message = "Please wait before scanning again"


# ============================================================================
# STORE ERRORS
# ============================================================================

class StoreError(ParkTrackError):
    """Failure reported by the session store collaborator, propagated unchanged"""

    code = "store_error"
    operator_message = "Failed to record parking operation"


class ActiveSessionExistsError(StoreError):
    """Conditional create refused: the driver already has an ACTIVE session"""

    code = "active_session_exists"
    operator_message = "Driver already has an active session."
