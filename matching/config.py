import logging
import os
import sys
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

TRUE_VALUES = {"1", "true", "yes", "y", "on"}


class ReconcileSettings(BaseModel):
    window_days: int = Field(default=7, ge=0)
    expected_name: Optional[str] = None
    skip_others: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        value = value.upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"Unknown log level {value}")
        return value

    @classmethod
    def from_env(cls) -> "ReconcileSettings":
        data = {}
        if os.getenv("RECONCILE_WINDOW_DAYS"):
            data["window_days"] = os.getenv("RECONCILE_WINDOW_DAYS")
        if os.getenv("RECONCILE_EXPECTED_NAME"):
            data["expected_name"] = os.getenv("RECONCILE_EXPECTED_NAME")
        if os.getenv("RECONCILE_SKIP_OTHERS"):
            data["skip_others"] = os.getenv("RECONCILE_SKIP_OTHERS", "").strip().lower() in TRUE_VALUES
        if os.getenv("RECONCILE_LOG_LEVEL"):
            data["log_level"] = os.getenv("RECONCILE_LOG_LEVEL")
        return cls(**data)


@lru_cache(maxsize=1)
def load_settings() -> ReconcileSettings:
    return ReconcileSettings.from_env()


def setup_logging(level: str = "INFO") -> logging.Logger:
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(handler)
    return root_logger
