"""Thin per-operation wrapper around the boto3 KMS client.

Each method issues exactly one KMS call and routes any failure through the
error taxonomy, so callers only ever see HandlerError. No retries happen
here: retry and stabilization decisions belong to the step engine.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .errors import translate_client_error

logger = logging.getLogger(__name__)

CREATE_ALIAS = "CreateAlias"
CREATE_KEY = "CreateKey"
DELETE_ALIAS = "DeleteAlias"
REPLICATE_KEY = "ReplicateKey"
DESCRIBE_KEY = "DescribeKey"
DISABLE_KEY = "DisableKey"
ENABLE_KEY = "EnableKey"
DISABLE_KEY_ROTATION = "DisableKeyRotation"
ENABLE_KEY_ROTATION = "EnableKeyRotation"
GET_KEY_POLICY = "GetKeyPolicy"
GET_KEY_ROTATION_STATUS = "GetKeyRotationStatus"
LIST_ALIASES = "ListAliases"
LIST_KEYS = "ListKeys"
LIST_RESOURCE_TAGS = "ListResourceTags"
PUT_KEY_POLICY = "PutKeyPolicy"
SCHEDULE_KEY_DELETION = "ScheduleKeyDeletion"
TAG_RESOURCE = "TagResource"
UNTAG_RESOURCE = "UntagResource"
UPDATE_ALIAS = "UpdateAlias"
UPDATE_KEY_DESCRIPTION = "UpdateKeyDescription"

# Operations that change remote state
MUTATING_OPERATIONS: frozenset[str] = frozenset(
    {
        CREATE_ALIAS,
        CREATE_KEY,
        DELETE_ALIAS,
        REPLICATE_KEY,
        DISABLE_KEY,
        ENABLE_KEY,
        DISABLE_KEY_ROTATION,
        ENABLE_KEY_ROTATION,
        PUT_KEY_POLICY,
        SCHEDULE_KEY_DELETION,
        TAG_RESOURCE,
        UNTAG_RESOURCE,
        UPDATE_ALIAS,
        UPDATE_KEY_DESCRIPTION,
    }
)

Request = dict[str, Any]
Response = dict[str, Any]


class KmsApi:
    """KMS operations bound to one boto3 client (one region)."""

    def __init__(self, client: Any) -> None:
        """Initialize with a boto3 KMS client.

        Args:
            client: boto3 KMS client, or anything exposing the same methods.
        """
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def _call(self, operation: str, method: Callable[..., Response], request: Request) -> Response:
        logger.debug("KMS call", extra={"operation": operation})
        try:
            return method(**request)
        except (ClientError, BotoCoreError) as e:
            error = translate_client_error(operation, e)
            logger.info(
                "KMS call failed",
                extra={
                    "operation": operation,
                    "error_code": error.code.value,
                    "kms_error": error.cause_code,
                },
            )
            raise error from e

    def create_key(self, request: Request) -> Response:
        return self._call(CREATE_KEY, self._client.create_key, request)

    def replicate_key(self, request: Request) -> Response:
        return self._call(REPLICATE_KEY, self._client.replicate_key, request)

    def describe_key(self, request: Request) -> Response:
        return self._call(DESCRIBE_KEY, self._client.describe_key, request)

    def disable_key(self, request: Request) -> Response:
        return self._call(DISABLE_KEY, self._client.disable_key, request)

    def enable_key(self, request: Request) -> Response:
        return self._call(ENABLE_KEY, self._client.enable_key, request)

    def disable_key_rotation(self, request: Request) -> Response:
        return self._call(DISABLE_KEY_ROTATION, self._client.disable_key_rotation, request)

    def enable_key_rotation(self, request: Request) -> Response:
        return self._call(ENABLE_KEY_ROTATION, self._client.enable_key_rotation, request)

    def get_key_policy(self, request: Request) -> Response:
        return self._call(GET_KEY_POLICY, self._client.get_key_policy, request)

    def get_key_rotation_status(self, request: Request) -> Response:
        return self._call(GET_KEY_ROTATION_STATUS, self._client.get_key_rotation_status, request)

    def list_keys(self, request: Request) -> Response:
        return self._call(LIST_KEYS, self._client.list_keys, request)

    def list_resource_tags(self, request: Request) -> Response:
        return self._call(LIST_RESOURCE_TAGS, self._client.list_resource_tags, request)

    def put_key_policy(self, request: Request) -> Response:
        return self._call(PUT_KEY_POLICY, self._client.put_key_policy, request)

    def schedule_key_deletion(self, request: Request) -> Response:
        return self._call(SCHEDULE_KEY_DELETION, self._client.schedule_key_deletion, request)

    def tag_resource(self, request: Request) -> Response:
        return self._call(TAG_RESOURCE, self._client.tag_resource, request)

    def untag_resource(self, request: Request) -> Response:
        return self._call(UNTAG_RESOURCE, self._client.untag_resource, request)

    def update_key_description(self, request: Request) -> Response:
        return self._call(UPDATE_KEY_DESCRIPTION, self._client.update_key_description, request)

    def create_alias(self, request: Request) -> Response:
        return self._call(CREATE_ALIAS, self._client.create_alias, request)

    def update_alias(self, request: Request) -> Response:
        return self._call(UPDATE_ALIAS, self._client.update_alias, request)

    def delete_alias(self, request: Request) -> Response:
        return self._call(DELETE_ALIAS, self._client.delete_alias, request)

    def list_aliases(self, request: Request) -> Response:
        return self._call(LIST_ALIASES, self._client.list_aliases, request)
