"""Pydantic models for KMS resources, the callback context and handler requests.

These models provide:
1. camelCase aliases matching the harness JSON documents
2. Defaults and write-only redaction for the resource variants
3. A serializable callback context that survives between invocations
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Remote state
# =============================================================================


class KeyState(str, Enum):
    """Lifecycle state reported by DescribeKey."""

    CREATING = "Creating"
    ENABLED = "Enabled"
    DISABLED = "Disabled"
    PENDING_DELETION = "PendingDeletion"
    PENDING_IMPORT = "PendingImport"
    PENDING_REPLICA_DELETION = "PendingReplicaDeletion"
    UNAVAILABLE = "Unavailable"
    UPDATING = "Updating"


# Reported as NotFound by read/update, and the success condition for delete.
# Tuple, not set: str-enum members hash by name, so `"PendingDeletion" in {...}`
# would never match.
DELETION_PENDING_STATES: tuple[KeyState, ...] = (
    KeyState.PENDING_DELETION,
    KeyState.PENDING_REPLICA_DELETION,
)


def is_deletion_pending(state: str | None) -> bool:
    return state in DELETION_PENDING_STATES


# Defaults applied on create/update
DEFAULT_DESCRIPTION = ""
DEFAULT_ENABLED = True
DEFAULT_ENABLE_KEY_ROTATION = False
DEFAULT_KEY_USAGE = "ENCRYPT_DECRYPT"
DEFAULT_KEY_SPEC = "SYMMETRIC_DEFAULT"
DEFAULT_ORIGIN = "AWS_KMS"
DEFAULT_MULTI_REGION = False

EXTERNAL_ORIGIN = "EXTERNAL"

WRITE_ONLY_FIELDS = ("pending_window_in_days", "bypass_policy_lockout_safety_check")

ALIAS_NAME_PATTERN = re.compile(r"^alias/[a-zA-Z0-9:/_-]+$")
MAX_ALIAS_NAME_LENGTH = 256
# Reserved for AWS managed keys
RESERVED_ALIAS_PREFIX = "alias/aws/"

# =============================================================================
# Resource models
# =============================================================================


class Tag(BaseModel):
    """Key/value tag. Frozen so tag sets can be diffed by value."""

    model_config = {"frozen": True, "populate_by_name": True}

    key: str = Field(alias="Key")
    value: str = Field(alias="Value")


class ResourceModel(BaseModel):
    """Fields shared by every KMS key resource variant."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    key_id: str | None = Field(None, alias="KeyId")
    arn: str | None = Field(None, alias="Arn")
    description: str | None = Field(None, alias="Description")
    enabled: bool | None = Field(None, alias="Enabled")
    # Accepted as a JSON document or its string form; stored back as a dict on read
    key_policy: dict[str, Any] | str | None = Field(None, alias="KeyPolicy")
    pending_window_in_days: int | None = Field(None, alias="PendingWindowInDays")
    tags: list[Tag] | None = Field(None, alias="Tags")

    @field_validator("pending_window_in_days")
    @classmethod
    def validate_pending_window(cls, v: int | None) -> int | None:
        if v is not None and not 7 <= v <= 30:
            raise ValueError("PendingWindowInDays must be between 7 and 30")
        return v

    def apply_defaults(self) -> ResourceModel:
        """Fill unset fields with their defaults, in place. Returns self."""
        if self.description is None:
            self.description = DEFAULT_DESCRIPTION
        if self.enabled is None:
            self.enabled = DEFAULT_ENABLED
        return self

    def redact_write_only(self) -> ResourceModel:
        """Copy of the model with write-only fields removed."""
        fields = type(self).model_fields
        return self.model_copy(update={name: None for name in WRITE_ONLY_FIELDS if name in fields})

    def to_payload(self) -> dict[str, Any]:
        """Serialize with harness aliases, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class KeyModel(ResourceModel):
    """Standalone (or multi-region primary) KMS key."""

    enable_key_rotation: bool | None = Field(None, alias="EnableKeyRotation")
    rotation_period_in_days: int | None = Field(None, alias="RotationPeriodInDays")
    key_spec: str | None = Field(None, alias="KeySpec")
    key_usage: str | None = Field(None, alias="KeyUsage")
    origin: str | None = Field(None, alias="Origin")
    multi_region: bool | None = Field(None, alias="MultiRegion")
    bypass_policy_lockout_safety_check: bool | None = Field(
        None, alias="BypassPolicyLockoutSafetyCheck"
    )

    @field_validator("rotation_period_in_days")
    @classmethod
    def validate_rotation_period(cls, v: int | None) -> int | None:
        if v is not None and not 90 <= v <= 2560:
            raise ValueError("RotationPeriodInDays must be between 90 and 2560")
        return v

    def apply_defaults(self) -> KeyModel:
        super().apply_defaults()
        if self.enable_key_rotation is None:
            self.enable_key_rotation = DEFAULT_ENABLE_KEY_ROTATION
        if self.key_usage is None:
            self.key_usage = DEFAULT_KEY_USAGE
        if self.key_spec is None:
            self.key_spec = DEFAULT_KEY_SPEC
        if self.origin is None:
            self.origin = DEFAULT_ORIGIN
        if self.multi_region is None:
            self.multi_region = DEFAULT_MULTI_REGION
        return self

    @property
    def supports_rotation(self) -> bool:
        """Automatic rotation exists only for symmetric keys with KMS-generated material."""
        return (self.key_spec or DEFAULT_KEY_SPEC) == DEFAULT_KEY_SPEC and (
            self.origin or DEFAULT_ORIGIN
        ) == DEFAULT_ORIGIN


class ReplicaKeyModel(ResourceModel):
    """Multi-region replica of a primary key living in another region."""

    primary_key_arn: str | None = Field(None, alias="PrimaryKeyArn")


class AliasModel(BaseModel):
    """Friendly name pointing at a key in the same account and region."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    alias_name: str | None = Field(None, alias="AliasName")
    target_key_id: str | None = Field(None, alias="TargetKeyId")

    @field_validator("alias_name")
    @classmethod
    def validate_alias_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not ALIAS_NAME_PATTERN.fullmatch(v) or len(v) > MAX_ALIAS_NAME_LENGTH:
            raise ValueError(
                "AliasName must start with alias/ and contain only alphanumerics, /, _, - or :"
            )
        if v.startswith(RESERVED_ALIAS_PREFIX):
            raise ValueError("AliasName must not begin with alias/aws/")
        return v

    def redact_write_only(self) -> AliasModel:
        return self.model_copy()

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Callback context
# =============================================================================


class CallbackContext(BaseModel):
    """Progress of one logical operation, carried across invocations.

    Completion flags are monotonic: once set they stay set until the harness
    discards the context after a terminal outcome.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Completion flags
    key_policy_updated: bool = Field(False, alias="keyPolicyUpdated")
    key_enabled: bool = Field(False, alias="keyEnabled")
    rotation_updated: bool = Field(False, alias="rotationUpdated")
    propagation_complete: bool = Field(False, alias="propagationComplete")
    # Alias create: the alias was confirmed absent before creating it
    pre_create_check_done: bool = Field(False, alias="preCreateCheckDone")

    # True for update, False for create/delete
    update_request: bool = Field(True, alias="updateRequest")

    # Tag listing
    tag_marker: str | None = Field(None, alias="tagMarker")
    existing_tags: set[Tag] | None = Field(None, alias="existingTags")

    # Stabilization polling
    stabilization_retries_remaining: int | None = Field(
        None, alias="stabilizationRetriesRemaining"
    )

    # Steps whose remote call was already issued
    completed_calls: list[str] = Field(default_factory=list, alias="completedCalls")

    # Backoff bookkeeping, keyed by step name
    retry_attempts: dict[str, int] = Field(default_factory=dict, alias="retryAttempts")
    retry_elapsed_seconds: dict[str, float] = Field(
        default_factory=dict, alias="retryElapsedSeconds"
    )

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form for the harness to persist."""
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("existingTags") is not None:
            # Sets have no stable JSON order
            data["existingTags"] = sorted(
                data["existingTags"], key=lambda t: (t["Key"], t["Value"])
            )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CallbackContext:
        if not data:
            return cls()
        return cls.model_validate(data)


# =============================================================================
# Handler request
# =============================================================================


class HandlerRequest(BaseModel):
    """One invocation as delivered by the harness."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    desired_resource_state: Any = Field(None, alias="desiredResourceState")
    previous_resource_state: Any = Field(None, alias="previousResourceState")
    callback_context: CallbackContext | None = Field(None, alias="callbackContext")
    next_token: str | None = Field(None, alias="nextToken")
    # Stack-level tags, merged with the model's own tags
    desired_resource_tags: dict[str, str] = Field(default_factory=dict, alias="desiredResourceTags")
    region: str | None = None
