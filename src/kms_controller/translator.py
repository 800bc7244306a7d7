"""Field-level translation between resource models and KMS requests/responses.

Capabilities are expressed as small protocols, and each resource variant's
translator implements the ones it supports:

    KeyTranslator:        identifiable, policy-bearing, taggable, rotatable, creatable
    ReplicaKeyTranslator: identifiable, policy-bearing, taggable, replicable
    AliasTranslator:      aliasable

The orchestrator only depends on the protocols, so the same sub-operations
serve every variant that supports them.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from .errors import ErrorCode, HandlerError
from .models import AliasModel, KeyModel, ReplicaKeyModel, Tag
from .tags import sorted_tags

DEFAULT_POLICY_NAME = "default"

SERIALIZE_POLICY = "SerializeKeyPolicy"
DESERIALIZE_POLICY = "DeserializeKeyPolicy"

Request = dict[str, Any]

# =============================================================================
# Shared conversions
# =============================================================================


def serialize_policy(policy: Mapping[str, Any] | str | None) -> str | None:
    """Policy as the JSON string KMS expects."""
    if policy is None or isinstance(policy, str):
        return policy
    try:
        return json.dumps(policy)
    except (TypeError, ValueError) as e:
        raise HandlerError(
            ErrorCode.INTERNAL_FAILURE, SERIALIZE_POLICY, f"Key policy is not serializable: {e}", e
        ) from e


def deserialize_policy(policy: str | None) -> dict[str, Any] | None:
    """Policy document returned by GetKeyPolicy, as a dict."""
    if policy is None:
        return None
    try:
        return json.loads(policy)
    except ValueError as e:
        raise HandlerError(
            ErrorCode.INTERNAL_FAILURE, DESERIALIZE_POLICY, f"Key policy is not valid JSON: {e}", e
        ) from e


def normalize_policy(policy: Mapping[str, Any] | str | None) -> str | None:
    """Canonical form for comparing two policies.

    A string and a dict describing the same document compare equal, and key
    order inside the document does not matter.
    """
    if policy is None:
        return None
    if isinstance(policy, str):
        try:
            policy = json.loads(policy)
        except ValueError:
            return policy
    try:
        return json.dumps(policy, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise HandlerError(
            ErrorCode.INTERNAL_FAILURE, SERIALIZE_POLICY, f"Key policy is not serializable: {e}", e
        ) from e


def tags_to_sdk(tags: Iterable[Tag]) -> list[dict[str, str]]:
    return [{"TagKey": t.key, "TagValue": t.value} for t in sorted_tags(tags)]


def tags_from_sdk(tags: Iterable[Mapping[str, str]]) -> set[Tag]:
    return {Tag(key=t["TagKey"], value=t["TagValue"]) for t in tags}


def _without_none(request: Request) -> Request:
    return {k: v for k, v in request.items() if v is not None}


def _key_id_request(key_id: str | None) -> Request:
    return {"KeyId": key_id}


# =============================================================================
# Capability protocols
# =============================================================================


@runtime_checkable
class IdentifiableResource(Protocol):
    def describe_key_request(self, model: Any) -> Request: ...

    def describe_key_by_id_request(self, key_id: str) -> Request: ...

    def set_key_metadata(self, model: Any, metadata: Mapping[str, Any]) -> None: ...

    def list_keys_request(self, next_token: str | None, limit: int) -> Request: ...

    def from_key_list_entry(self, entry: Mapping[str, Any]) -> Any: ...

    def enable_key_request(self, model: Any) -> Request: ...

    def disable_key_request(self, model: Any) -> Request: ...

    def update_key_description_request(self, model: Any) -> Request: ...

    def schedule_key_deletion_request(self, model: Any) -> Request: ...


@runtime_checkable
class PolicyBearingResource(Protocol):
    def get_key_policy_request(self, model: Any) -> Request: ...

    def put_key_policy_request(self, model: Any) -> Request: ...

    def set_key_policy(self, model: Any, policy: dict[str, Any] | None) -> None: ...


@runtime_checkable
class TaggableResource(Protocol):
    def list_resource_tags_request(self, model: Any, marker: str | None) -> Request: ...

    def tag_resource_request(self, model: Any, tags: Iterable[Tag]) -> Request: ...

    def untag_resource_request(self, model: Any, tags: Iterable[Tag]) -> Request: ...

    def set_tags(self, model: Any, tags: Iterable[Tag]) -> None: ...


@runtime_checkable
class RotatableResource(Protocol):
    def get_key_rotation_status_request(self, model: Any) -> Request: ...

    def enable_key_rotation_request(self, model: Any) -> Request: ...

    def disable_key_rotation_request(self, model: Any) -> Request: ...

    def set_rotation_status(self, model: Any, response: Mapping[str, Any]) -> None: ...


@runtime_checkable
class CreatableResource(Protocol):
    def create_key_request(self, model: Any, tags: Mapping[str, str]) -> Request: ...

    def set_created_key_metadata(self, model: Any, metadata: Mapping[str, Any]) -> None: ...


@runtime_checkable
class ReplicableResource(Protocol):
    def replicate_key_request(
        self, model: Any, region: str, tags: Mapping[str, str]
    ) -> Request: ...

    def set_replica_key_metadata(self, model: Any, metadata: Mapping[str, Any]) -> None: ...


@runtime_checkable
class AliasResource(Protocol):
    def describe_alias_request(self, model: Any) -> Request: ...

    def create_alias_request(self, model: Any) -> Request: ...

    def update_alias_request(self, model: Any) -> Request: ...

    def delete_alias_request(self, model: Any) -> Request: ...

    def list_aliases_request(
        self, target_key_id: str | None, marker: str | None, limit: int
    ) -> Request: ...

    def from_alias_list_entry(self, entry: Mapping[str, Any]) -> Any: ...


class KeyResourceTranslator(
    IdentifiableResource, PolicyBearingResource, TaggableResource, Protocol
):
    """What the orchestrator needs from every variant."""


# Anything a handler can hand to the orchestrator
ResourceTranslator = KeyResourceTranslator | AliasResource


# =============================================================================
# Key
# =============================================================================


class KeyTranslator:
    """Translation for KeyModel."""

    model_class = KeyModel

    def describe_key_request(self, model: KeyModel) -> Request:
        return _key_id_request(model.key_id)

    def describe_key_by_id_request(self, key_id: str) -> Request:
        return _key_id_request(key_id)

    def set_key_metadata(self, model: KeyModel, metadata: Mapping[str, Any]) -> None:
        model.key_id = metadata["KeyId"]
        model.arn = metadata.get("Arn")
        model.description = metadata.get("Description")
        model.enabled = metadata.get("Enabled")
        model.key_usage = metadata.get("KeyUsage")
        model.key_spec = metadata.get("KeySpec") or metadata.get("CustomerMasterKeySpec")
        model.origin = metadata.get("Origin")
        model.multi_region = metadata.get("MultiRegion")

    def list_keys_request(self, next_token: str | None, limit: int) -> Request:
        return _without_none({"Limit": limit, "Marker": next_token})

    def from_key_list_entry(self, entry: Mapping[str, Any]) -> KeyModel:
        return KeyModel(key_id=entry["KeyId"], arn=entry.get("KeyArn"))

    def enable_key_request(self, model: KeyModel) -> Request:
        return _key_id_request(model.key_id)

    def disable_key_request(self, model: KeyModel) -> Request:
        return _key_id_request(model.key_id)

    def update_key_description_request(self, model: KeyModel) -> Request:
        return {"KeyId": model.key_id, "Description": model.description or ""}

    def schedule_key_deletion_request(self, model: KeyModel) -> Request:
        return _without_none(
            {"KeyId": model.key_id, "PendingWindowInDays": model.pending_window_in_days}
        )

    def get_key_policy_request(self, model: KeyModel) -> Request:
        return {"KeyId": model.key_id, "PolicyName": DEFAULT_POLICY_NAME}

    def put_key_policy_request(self, model: KeyModel) -> Request:
        return _without_none(
            {
                "KeyId": model.key_id,
                "PolicyName": DEFAULT_POLICY_NAME,
                "Policy": serialize_policy(model.key_policy),
                "BypassPolicyLockoutSafetyCheck": model.bypass_policy_lockout_safety_check,
            }
        )

    def set_key_policy(self, model: KeyModel, policy: dict[str, Any] | None) -> None:
        model.key_policy = policy

    def list_resource_tags_request(self, model: KeyModel, marker: str | None) -> Request:
        return _without_none({"KeyId": model.key_id, "Marker": marker})

    def tag_resource_request(self, model: KeyModel, tags: Iterable[Tag]) -> Request:
        return {"KeyId": model.key_id, "Tags": tags_to_sdk(tags)}

    def untag_resource_request(self, model: KeyModel, tags: Iterable[Tag]) -> Request:
        return {"KeyId": model.key_id, "TagKeys": sorted({t.key for t in tags})}

    def set_tags(self, model: KeyModel, tags: Iterable[Tag]) -> None:
        model.tags = sorted_tags(tags) or None

    def get_key_rotation_status_request(self, model: KeyModel) -> Request:
        return _key_id_request(model.key_id)

    def enable_key_rotation_request(self, model: KeyModel) -> Request:
        return _without_none(
            {"KeyId": model.key_id, "RotationPeriodInDays": model.rotation_period_in_days}
        )

    def disable_key_rotation_request(self, model: KeyModel) -> Request:
        return _key_id_request(model.key_id)

    def set_rotation_status(self, model: KeyModel, response: Mapping[str, Any]) -> None:
        model.enable_key_rotation = response.get("KeyRotationEnabled", False)
        if model.enable_key_rotation:
            model.rotation_period_in_days = response.get("RotationPeriodInDays")

    def create_key_request(self, model: KeyModel, tags: Mapping[str, str]) -> Request:
        return _without_none(
            {
                "Description": model.description,
                "KeyUsage": model.key_usage,
                "KeySpec": model.key_spec,
                "Origin": model.origin,
                "MultiRegion": model.multi_region,
                "Policy": serialize_policy(model.key_policy),
                "BypassPolicyLockoutSafetyCheck": model.bypass_policy_lockout_safety_check,
                "Tags": tags_to_sdk(Tag(key=k, value=v) for k, v in tags.items()) or None,
            }
        )

    def set_created_key_metadata(self, model: KeyModel, metadata: Mapping[str, Any]) -> None:
        model.key_id = metadata["KeyId"]
        model.arn = metadata.get("Arn")


# =============================================================================
# ReplicaKey
# =============================================================================


class ReplicaKeyTranslator:
    """Translation for ReplicaKeyModel."""

    model_class = ReplicaKeyModel

    def describe_key_request(self, model: ReplicaKeyModel) -> Request:
        return _key_id_request(model.key_id)

    def describe_key_by_id_request(self, key_id: str) -> Request:
        return _key_id_request(key_id)

    def set_key_metadata(self, model: ReplicaKeyModel, metadata: Mapping[str, Any]) -> None:
        model.key_id = metadata["KeyId"]
        model.arn = metadata.get("Arn")
        model.description = metadata.get("Description")
        model.enabled = metadata.get("Enabled")
        primary = metadata.get("MultiRegionConfiguration", {}).get("PrimaryKey", {})
        if primary.get("Arn"):
            model.primary_key_arn = primary["Arn"]

    def list_keys_request(self, next_token: str | None, limit: int) -> Request:
        return _without_none({"Limit": limit, "Marker": next_token})

    def from_key_list_entry(self, entry: Mapping[str, Any]) -> ReplicaKeyModel:
        return ReplicaKeyModel(key_id=entry["KeyId"], arn=entry.get("KeyArn"))

    def enable_key_request(self, model: ReplicaKeyModel) -> Request:
        return _key_id_request(model.key_id)

    def disable_key_request(self, model: ReplicaKeyModel) -> Request:
        return _key_id_request(model.key_id)

    def update_key_description_request(self, model: ReplicaKeyModel) -> Request:
        return {"KeyId": model.key_id, "Description": model.description or ""}

    def schedule_key_deletion_request(self, model: ReplicaKeyModel) -> Request:
        return _without_none(
            {"KeyId": model.key_id, "PendingWindowInDays": model.pending_window_in_days}
        )

    def get_key_policy_request(self, model: ReplicaKeyModel) -> Request:
        return {"KeyId": model.key_id, "PolicyName": DEFAULT_POLICY_NAME}

    def put_key_policy_request(self, model: ReplicaKeyModel) -> Request:
        return {
            "KeyId": model.key_id,
            "PolicyName": DEFAULT_POLICY_NAME,
            "Policy": serialize_policy(model.key_policy),
        }

    def set_key_policy(self, model: ReplicaKeyModel, policy: dict[str, Any] | None) -> None:
        model.key_policy = policy

    def list_resource_tags_request(self, model: ReplicaKeyModel, marker: str | None) -> Request:
        return _without_none({"KeyId": model.key_id, "Marker": marker})

    def tag_resource_request(self, model: ReplicaKeyModel, tags: Iterable[Tag]) -> Request:
        return {"KeyId": model.key_id, "Tags": tags_to_sdk(tags)}

    def untag_resource_request(self, model: ReplicaKeyModel, tags: Iterable[Tag]) -> Request:
        return {"KeyId": model.key_id, "TagKeys": sorted({t.key for t in tags})}

    def set_tags(self, model: ReplicaKeyModel, tags: Iterable[Tag]) -> None:
        model.tags = sorted_tags(tags) or None

    def replicate_key_request(
        self, model: ReplicaKeyModel, region: str, tags: Mapping[str, str]
    ) -> Request:
        return _without_none(
            {
                "KeyId": model.primary_key_arn,
                "ReplicaRegion": region,
                "Description": model.description,
                "Policy": serialize_policy(model.key_policy),
                "Tags": tags_to_sdk(Tag(key=k, value=v) for k, v in tags.items()) or None,
            }
        )

    def set_replica_key_metadata(
        self, model: ReplicaKeyModel, metadata: Mapping[str, Any]
    ) -> None:
        model.key_id = metadata["KeyId"]
        model.arn = metadata.get("Arn")



# =============================================================================
# Alias
# =============================================================================


class AliasTranslator:
    """Translation for AliasModel."""

    model_class = AliasModel

    def describe_alias_request(self, model: AliasModel) -> Request:
        # DescribeKey resolves an alias name to the key it points at
        return _key_id_request(model.alias_name)

    def create_alias_request(self, model: AliasModel) -> Request:
        return {"AliasName": model.alias_name, "TargetKeyId": model.target_key_id}

    def update_alias_request(self, model: AliasModel) -> Request:
        return {"AliasName": model.alias_name, "TargetKeyId": model.target_key_id}

    def delete_alias_request(self, model: AliasModel) -> Request:
        return {"AliasName": model.alias_name}

    def list_aliases_request(
        self, target_key_id: str | None, marker: str | None, limit: int
    ) -> Request:
        return _without_none({"KeyId": target_key_id, "Marker": marker, "Limit": limit})

    def from_alias_list_entry(self, entry: Mapping[str, Any]) -> AliasModel:
        return AliasModel(alias_name=entry["AliasName"], target_key_id=entry.get("TargetKeyId"))
