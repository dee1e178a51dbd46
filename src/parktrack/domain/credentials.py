# File: src/parktrack/domain/credentials.py
"""
QR credential wire format and validation

Wire format (ASCII, '|' delimited, leading literal PARKTRACK):

    5 fields  PARKTRACK|driver|vehicle|timestamp|hash                    (intent ENTRY)
    6 fields  PARKTRACK|driver|vehicle|timestamp|intent|hash
    9 fields  PARKTRACK|driver|vehicle|vehicle_id|model|color|timestamp|intent|hash

Decoding dispatches on the field count alone. The encoder always writes the
9-field form. Validation is a separate, side-effect free step evaluated in the
order format, hash, expiry.
"""

from typing import Callable, Optional, Tuple
from datetime import datetime
import base64
import hashlib
import hmac
import logging
import re

from .exceptions import (
    CredentialError, CredentialFormatError, ExpiredCredentialError, IntegrityError
)
from .models import Credential, CredentialIntent, ValidationStatus, to_epoch_millis, utc_now


MARKER = "PARKTRACK"
DELIMITER = "|"
DEFAULT_SECRET = "PARKTRACK_SECRET_KEY"
DEFAULT_VALIDITY_SECONDS = 30
DEFAULT_CLOCK_SKEW_SECONDS = 5

LEGACY_FIELD_COUNT = 5
TYPED_FIELD_COUNT = 6
FULL_FIELD_COUNT = 9

_TIMESTAMP_PATTERN = re.compile(r"\d+", re.ASCII)

audit_logger = logging.getLogger("parktrack.audit")


def error_for_status(status: ValidationStatus) -> Optional[CredentialError]:
    """Map a failed validation status to the error the caller should surface"""
    errors = {
        ValidationStatus.INVALID_FORMAT: CredentialFormatError,
        ValidationStatus.INVALID_HASH: IntegrityError,
        ValidationStatus.EXPIRED: ExpiredCredentialError,
    }
    error_class = errors.get(status)
    return error_class() if error_class else None


class CredentialCodec:
    """
    Encodes, decodes and validates scan credentials

    Args:
        secret: shared secret mixed into the security hash
        validity_seconds: how long after issue a credential is accepted
        clock_skew_seconds: how far in the future an issue time may lie
        clock: returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        secret: str = DEFAULT_SECRET,
        validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS
    ):
        if validity_seconds <= 0:
            raise ValueError("Validity window must be positive")
        if clock_skew_seconds < 0:
            raise ValueError("Clock skew allowance cannot be negative")
        self._secret = secret
        self.validity_seconds = validity_seconds
        self.clock_skew_seconds = clock_skew_seconds
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Hashing and issuing
    # ------------------------------------------------------------------

    def compute_hash(self, driver_id: str, issued_at: int) -> str:
        """Base64 SHA-256 over driver id, issue timestamp and the shared secret"""
        digest = hashlib.sha256(f"{driver_id}|{issued_at}|{self._secret}".encode("utf-8")).digest()
        return base64.b64encode(digest).decode("ascii")

    def issue(
        self,
        driver_id: str,
        vehicle_number: str,
        intent: CredentialIntent = CredentialIntent.ENTRY,
        vehicle_id: str = "",
        vehicle_model: str = "",
        vehicle_color: str = "",
        issued_at: Optional[int] = None
    ) -> Credential:
        """Create a signed credential, as the driver-side QR generator does"""
        if issued_at is None:
            issued_at = to_epoch_millis(self._clock())
        return Credential(
            driver_id=driver_id,
            vehicle_number=vehicle_number,
            issued_at=issued_at,
            security_hash=self.compute_hash(driver_id, issued_at),
            intent=intent,
            vehicle_id=vehicle_id,
            vehicle_model=vehicle_model,
            vehicle_color=vehicle_color,
        )

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    def encode(self, credential: Credential) -> str:
        """Serialize to the 9-field wire string"""
        fields = [
            MARKER,
            credential.driver_id,
            credential.vehicle_number,
            credential.vehicle_id,
            credential.vehicle_model,
            credential.vehicle_color,
            str(credential.issued_at),
            credential.intent.value,
            credential.security_hash,
        ]
        for value in fields[1:]:
            if DELIMITER in value:
                raise CredentialFormatError(f"Field contains reserved delimiter: {value!r}")
        return DELIMITER.join(fields)

    def decode(self, payload: str) -> Credential:
        """
        Parse a wire string
        Raises: CredentialFormatError on wrong marker, arity, timestamp or intent
        """
        parts = payload.split(DELIMITER)
        if parts[0] != MARKER:
            raise CredentialFormatError("Missing PARKTRACK marker")

        if len(parts) == LEGACY_FIELD_COUNT:
            _, driver_id, vehicle_number, timestamp, security_hash = parts
            intent_tag = CredentialIntent.ENTRY.value
            vehicle_id = vehicle_model = vehicle_color = ""
        elif len(parts) == TYPED_FIELD_COUNT:
            _, driver_id, vehicle_number, timestamp, intent_tag, security_hash = parts
            vehicle_id = vehicle_model = vehicle_color = ""
        elif len(parts) == FULL_FIELD_COUNT:
            (_, driver_id, vehicle_number, vehicle_id, vehicle_model, vehicle_color,
             timestamp, intent_tag, security_hash) = parts
        else:
            raise CredentialFormatError(f"Unexpected field count: {len(parts)}")

        if not _TIMESTAMP_PATTERN.fullmatch(timestamp):
            raise CredentialFormatError(f"Timestamp is not an integer: {timestamp!r}")

        try:
            intent = CredentialIntent(intent_tag)
        except ValueError:
            raise CredentialFormatError(f"Unknown credential type: {intent_tag!r}") from None

        if not driver_id or not vehicle_number:
            raise CredentialFormatError("Driver and vehicle must be present")

        return Credential(
            driver_id=driver_id,
            vehicle_number=vehicle_number,
            issued_at=int(timestamp),
            security_hash=security_hash,
            intent=intent,
            vehicle_id=vehicle_id,
            vehicle_model=vehicle_model,
            vehicle_color=vehicle_color,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, credential: Credential, now: Optional[datetime] = None) -> ValidationStatus:
        """Check format, then hash, then expiry. Pure: no state is touched."""
        if not credential.driver_id or credential.issued_at < 0 or not credential.security_hash:
            return ValidationStatus.INVALID_FORMAT

        expected = self.compute_hash(credential.driver_id, credential.issued_at)
        if not hmac.compare_digest(expected.encode("ascii"), credential.security_hash.encode("utf-8")):
            audit_logger.warning(
                f"Security hash mismatch for driver {credential.driver_id} "
                f"(issued_at={credential.issued_at})"
            )
            return ValidationStatus.INVALID_HASH

        now = now or self._clock()
        age = credential.age_millis(now)
        if age > self.validity_seconds * 1000:
            return ValidationStatus.EXPIRED
        if age < -self.clock_skew_seconds * 1000:
            # Issued in the future: the generator clock is wrong, a fresh QR is needed
            self.logger.warning(
                f"Credential for driver {credential.driver_id} issued {-age} ms in the future"
            )
            return ValidationStatus.EXPIRED

        return ValidationStatus.VALID

    def validate_payload(
        self,
        payload: str,
        now: Optional[datetime] = None
    ) -> Tuple[ValidationStatus, Optional[Credential]]:
        """Decode and validate a raw scan string in one step"""
        try:
            credential = self.decode(payload)
        except CredentialFormatError as e:
            self.logger.info(f"Rejected malformed credential: {e}")
            return ValidationStatus.INVALID_FORMAT, None
        return self.validate(credential, now), credential

    def remaining_seconds(self, credential: Credential, now: Optional[datetime] = None) -> int:
        return credential.remaining_seconds(now or self._clock(), self.validity_seconds)
