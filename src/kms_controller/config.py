"""Configuration management with validation.

Timing and retry knobs for the reconciliation engine are validated at load
time, so a bad environment fails before any KMS call is issued.
"""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass
from typing import Any


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_REGION = "us-east-1"

# Eventual-consistency wait after updates, and after create/delete
DEFAULT_PROPAGATION_DELAY_UPDATE_SECONDS = 60
DEFAULT_PROPAGATION_DELAY_CREATE_SECONDS = 15
MAX_PROPAGATION_DELAY_SECONDS = 900

# Stabilization polling: 120 polls of 5s bound a stabilization to ~10 minutes
DEFAULT_STABILIZATION_POLL_SECONDS = 5
DEFAULT_STABILIZATION_MAX_ATTEMPTS = 120

# Capped exponential backoff around disable-key
DEFAULT_BACKOFF_MIN_DELAY_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_DELAY_SECONDS = 5.0
DEFAULT_BACKOFF_POWER = 1.3
DEFAULT_BACKOFF_TIMEOUT_SECONDS = 60.0

# ListKeys accepts 1..1000
DEFAULT_LIST_KEYS_PAGE_SIZE = 50
MAX_LIST_KEYS_PAGE_SIZE = 1000

# botocore-level retries for throttling and transport errors
DEFAULT_KMS_MAX_ATTEMPTS = 3
MAX_KMS_MAX_ATTEMPTS = 10

VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d+$"


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-operation.
    """

    region: str = DEFAULT_REGION

    # Timing
    propagation_delay_update_seconds: int = DEFAULT_PROPAGATION_DELAY_UPDATE_SECONDS
    propagation_delay_create_seconds: int = DEFAULT_PROPAGATION_DELAY_CREATE_SECONDS
    stabilization_poll_seconds: int = DEFAULT_STABILIZATION_POLL_SECONDS
    stabilization_max_attempts: int = DEFAULT_STABILIZATION_MAX_ATTEMPTS

    # Backoff
    backoff_min_delay_seconds: float = DEFAULT_BACKOFF_MIN_DELAY_SECONDS
    backoff_max_delay_seconds: float = DEFAULT_BACKOFF_MAX_DELAY_SECONDS
    backoff_power: float = DEFAULT_BACKOFF_POWER
    backoff_timeout_seconds: float = DEFAULT_BACKOFF_TIMEOUT_SECONDS

    # Behavior
    list_keys_page_size: int = DEFAULT_LIST_KEYS_PAGE_SIZE
    soft_fail_access_denied: bool = True
    kms_max_attempts: int = DEFAULT_KMS_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        for name, value in (
            ("PROPAGATION_DELAY_UPDATE_SECONDS", self.propagation_delay_update_seconds),
            ("PROPAGATION_DELAY_CREATE_SECONDS", self.propagation_delay_create_seconds),
        ):
            if not 0 <= value <= MAX_PROPAGATION_DELAY_SECONDS:
                errors.append(f"{name} must be between 0 and {MAX_PROPAGATION_DELAY_SECONDS}")

        if self.stabilization_poll_seconds < 1:
            errors.append("STABILIZATION_POLL_SECONDS must be at least 1")
        if self.stabilization_max_attempts < 1:
            errors.append("STABILIZATION_MAX_ATTEMPTS must be at least 1")

        if self.backoff_min_delay_seconds <= 0:
            errors.append("BACKOFF_MIN_DELAY_SECONDS must be positive")
        if self.backoff_max_delay_seconds < self.backoff_min_delay_seconds:
            errors.append("BACKOFF_MAX_DELAY_SECONDS must not be below BACKOFF_MIN_DELAY_SECONDS")
        if self.backoff_power < 1:
            errors.append("BACKOFF_POWER must be at least 1")
        if self.backoff_timeout_seconds <= 0:
            errors.append("BACKOFF_TIMEOUT_SECONDS must be positive")

        if not 1 <= self.list_keys_page_size <= MAX_LIST_KEYS_PAGE_SIZE:
            errors.append(f"LIST_KEYS_PAGE_SIZE must be between 1 and {MAX_LIST_KEYS_PAGE_SIZE}")

        if not 1 <= self.kms_max_attempts <= MAX_KMS_MAX_ATTEMPTS:
            errors.append(f"KMS_MAX_ATTEMPTS must be between 1 and {MAX_KMS_MAX_ATTEMPTS}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION: Region handlers run in (default: us-east-1)
            PROPAGATION_DELAY_UPDATE_SECONDS: Wait after updates (default: 60)
            PROPAGATION_DELAY_CREATE_SECONDS: Wait after create/delete (default: 15)
            STABILIZATION_POLL_SECONDS: Delay between stabilization polls (default: 5)
            STABILIZATION_MAX_ATTEMPTS: Polls before NotStabilized (default: 120)
            BACKOFF_MIN_DELAY_SECONDS: First retry delay (default: 1)
            BACKOFF_MAX_DELAY_SECONDS: Retry delay cap (default: 5)
            BACKOFF_POWER: Exponential growth factor (default: 1.3)
            BACKOFF_TIMEOUT_SECONDS: Total retry budget (default: 60)
            LIST_KEYS_PAGE_SIZE: ListKeys page size (default: 50)
            SOFT_FAIL_ACCESS_DENIED: Tolerate AccessDenied on read enrichment (default: true)
            KMS_MAX_ATTEMPTS: botocore retry attempts per call (default: 3)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            region=os.environ.get("AWS_REGION", DEFAULT_REGION),
            propagation_delay_update_seconds=get_int(
                "PROPAGATION_DELAY_UPDATE_SECONDS", DEFAULT_PROPAGATION_DELAY_UPDATE_SECONDS
            ),
            propagation_delay_create_seconds=get_int(
                "PROPAGATION_DELAY_CREATE_SECONDS", DEFAULT_PROPAGATION_DELAY_CREATE_SECONDS
            ),
            stabilization_poll_seconds=get_int(
                "STABILIZATION_POLL_SECONDS", DEFAULT_STABILIZATION_POLL_SECONDS
            ),
            stabilization_max_attempts=get_int(
                "STABILIZATION_MAX_ATTEMPTS", DEFAULT_STABILIZATION_MAX_ATTEMPTS
            ),
            backoff_min_delay_seconds=get_float(
                "BACKOFF_MIN_DELAY_SECONDS", DEFAULT_BACKOFF_MIN_DELAY_SECONDS
            ),
            backoff_max_delay_seconds=get_float(
                "BACKOFF_MAX_DELAY_SECONDS", DEFAULT_BACKOFF_MAX_DELAY_SECONDS
            ),
            backoff_power=get_float("BACKOFF_POWER", DEFAULT_BACKOFF_POWER),
            backoff_timeout_seconds=get_float(
                "BACKOFF_TIMEOUT_SECONDS", DEFAULT_BACKOFF_TIMEOUT_SECONDS
            ),
            list_keys_page_size=get_int("LIST_KEYS_PAGE_SIZE", DEFAULT_LIST_KEYS_PAGE_SIZE),
            soft_fail_access_denied=get_bool("SOFT_FAIL_ACCESS_DENIED", True),
            kms_max_attempts=get_int("KMS_MAX_ATTEMPTS", DEFAULT_KMS_MAX_ATTEMPTS),
        )
