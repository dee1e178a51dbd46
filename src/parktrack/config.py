# File: src/parktrack/config.py
"""
Runtime configuration and logging setup for the ParkTrack core

Settings come from PARKTRACK_* environment variables with the defaults of the
reference policy (30 s credential validity, 3 s debounce, sessions between
1 minute and 24 hours).
"""

from typing import Optional
import logging
import os
import sys

from pydantic import BaseModel, ConfigDict, Field

from .domain.credentials import DEFAULT_SECRET, DEFAULT_VALIDITY_SECONDS
from .application.debounce import DEFAULT_DEBOUNCE_SECONDS


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ParkTrackSettings(BaseModel):
    """Core settings"""

    model_config = ConfigDict(frozen=True)

    qr_secret: str = Field(default=DEFAULT_SECRET, min_length=1)
    credential_validity_seconds: int = Field(default=DEFAULT_VALIDITY_SECONDS, gt=0)
    debounce_seconds: float = Field(default=DEFAULT_DEBOUNCE_SECONDS, ge=0)
    min_session_minutes: int = Field(default=1, ge=0)
    max_session_hours: int = Field(default=24, gt=0)
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @property
    def min_session_seconds(self) -> int:
        return self.min_session_minutes * 60

    @property
    def max_session_seconds(self) -> int:
        return self.max_session_hours * 3600

    @classmethod
    def from_env(cls) -> "ParkTrackSettings":
        """Build settings from PARKTRACK_* environment variables"""
        values = {
            "qr_secret": os.getenv("PARKTRACK_QR_SECRET"),
            "credential_validity_seconds": os.getenv("PARKTRACK_CREDENTIAL_VALIDITY_SECONDS"),
            "debounce_seconds": os.getenv("PARKTRACK_DEBOUNCE_SECONDS"),
            "min_session_minutes": os.getenv("PARKTRACK_MIN_SESSION_MINUTES"),
            "max_session_hours": os.getenv("PARKTRACK_MAX_SESSION_HOURS"),
            "log_level": os.getenv("PARKTRACK_LOG_LEVEL"),
            "log_dir": os.getenv("PARKTRACK_LOG_DIR"),
        }
        return cls(**{key: value for key, value in values.items() if value is not None})


def setup_logging(settings: Optional[ParkTrackSettings] = None) -> logging.Logger:
    """Setup application logging configuration"""
    settings = settings or ParkTrackSettings()
    handlers = [logging.StreamHandler(sys.stdout)]

    if settings.log_dir:
        os.makedirs(settings.log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(settings.log_dir, 'parktrack.log')))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )
    return logging.getLogger("parktrack")
