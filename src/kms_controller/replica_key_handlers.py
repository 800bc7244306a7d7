"""Handlers for the ReplicaKey resource variant.

A replica is created by calling ReplicateKey against the primary key's
region, and is managed in its own region afterwards. It has no rotation of
its own (rotation follows the primary), and its key material properties are
inherited, so there is nothing to validate beyond the model itself.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .engine import Outcome
from .errors import invalid_request, not_found
from .handler import BaseHandler
from .models import CallbackContext, HandlerRequest, ReplicaKeyModel
from .orchestrator import KeyOrchestrator
from .tags import desired_resource_tags
from .translator import ReplicaKeyTranslator

RESOURCE_TYPE = "AWS::KMS::ReplicaKey"


def is_replica_key(metadata: Mapping[str, Any]) -> bool:
    if not metadata.get("MultiRegion"):
        return False
    key_type = metadata.get("MultiRegionConfiguration", {}).get("MultiRegionKeyType")
    return key_type == "REPLICA"


class ReplicaKeyHandler(BaseHandler):
    """Common wiring for ReplicaKey handlers."""

    resource_type = RESOURCE_TYPE

    def translator(self) -> ReplicaKeyTranslator:
        return ReplicaKeyTranslator()

    def _desired(self, request: HandlerRequest) -> ReplicaKeyModel:
        return self._model(request.desired_resource_state, ReplicaKeyModel) or ReplicaKeyModel()

    @staticmethod
    def _require_key_id(model: ReplicaKeyModel, operation: str) -> None:
        if not model.key_id:
            raise not_found(operation, None)


class ReplicaKeyCreateHandler(ReplicaKeyHandler):
    """Replicate the primary key, wait for the replica, then settle its state."""

    action = "create"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request).apply_defaults()
        if not model.primary_key_arn:
            raise invalid_request("ReplicateKey", "PrimaryKeyArn is required")
        tags = desired_resource_tags(model, request.desired_resource_tags)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.replicate_key(model, context, tags))
            .then(lambda o: orchestrator.disable_key_if_necessary(None, model, context))
            .then(lambda o: orchestrator.propagation.set_request_type(o, False))
            .then(orchestrator.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success(model.redact_write_only()))
        )


class ReplicaKeyReadHandler(ReplicaKeyHandler):
    action = "read"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_key_id(model, "ReadReplicaKey")

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.describe_key(model, context, update_model=True))
            .then(lambda o: orchestrator.get_key_policy(model, context))
            .then(lambda o: orchestrator.retrieve_resource_tags(model, context, update_model=True))
            .then(lambda o: Outcome.success(model.redact_write_only()))
        )


class ReplicaKeyUpdateHandler(ReplicaKeyHandler):
    """Update a replica. Enabled state does not affect the other updates, so no wait."""

    action = "update"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request).apply_defaults()
        previous = self._model(request.previous_resource_state, ReplicaKeyModel)
        if previous is not None:
            previous.apply_defaults()
            if not model.key_id:
                model.key_id = previous.key_id
                model.arn = model.arn or previous.arn

        self._require_key_id(model, "UpdateReplicaKey")
        tags = desired_resource_tags(model, request.desired_resource_tags)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.describe_key(model, context, update_model=False))
            .then(lambda o: orchestrator.enable_key_if_necessary(previous, model, context, False))
            .then(lambda o: orchestrator.disable_key_if_necessary(previous, model, context))
            .then(lambda o: orchestrator.update_key_description(previous, model, context))
            .then(lambda o: orchestrator.update_key_policy(previous, model, context))
            .then(lambda o: orchestrator.update_key_tags(model, tags, context))
            .then(orchestrator.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success(model.redact_write_only()))
        )


class ReplicaKeyDeleteHandler(ReplicaKeyHandler):
    action = "delete"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_key_id(model, "DeleteReplicaKey")
        return orchestrator.delete_key(model, context)


class ReplicaKeyListHandler(ReplicaKeyHandler):
    action = "list"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        return orchestrator.list_keys_and_filter_by_metadata(request.next_token, is_replica_key)


HANDLERS: dict[str, type[ReplicaKeyHandler]] = {
    "create": ReplicaKeyCreateHandler,
    "read": ReplicaKeyReadHandler,
    "update": ReplicaKeyUpdateHandler,
    "delete": ReplicaKeyDeleteHandler,
    "list": ReplicaKeyListHandler,
}
