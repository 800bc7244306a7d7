"""Handlers for the Key resource variant (standalone and multi-region primary keys)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .engine import Outcome
from .errors import invalid_request, not_found
from .handler import BaseHandler
from .models import DEFAULT_KEY_SPEC, EXTERNAL_ORIGIN, CallbackContext, HandlerRequest, KeyModel
from .orchestrator import KeyOrchestrator
from .tags import desired_resource_tags
from .translator import KeyTranslator

RESOURCE_TYPE = "AWS::KMS::Key"

VALIDATE_RESOURCE_MODEL = "ValidateResourceModel"

ROTATION_UNSUPPORTED_MESSAGE = (
    "You cannot set the EnableKeyRotation property to true on asymmetric or external keys."
)
ROTATION_WHILE_DISABLED_MESSAGE = (
    "You cannot change the EnableKeyRotation property while the Enabled property is false."
)
IMMUTABLE_PROPERTIES_MESSAGE = (
    "You cannot change the values of the KeySpec, KeyUsage, Origin, or MultiRegion "
    "properties of an AWS::KMS::Key resource."
)


def validate_resource_model(previous: KeyModel | None, model: KeyModel) -> None:
    """Reject transitions KMS cannot perform, before any mutating call.

    Raises:
        HandlerError: InvalidRequest describing the rejected change.
    """
    if model.enable_key_rotation and (
        model.key_spec != DEFAULT_KEY_SPEC or model.origin == EXTERNAL_ORIGIN
    ):
        raise invalid_request(VALIDATE_RESOURCE_MODEL, ROTATION_UNSUPPORTED_MESSAGE)

    if previous is None:
        return

    if (
        not previous.enabled
        and not model.enabled
        and previous.enable_key_rotation != model.enable_key_rotation
    ):
        raise invalid_request(VALIDATE_RESOURCE_MODEL, ROTATION_WHILE_DISABLED_MESSAGE)

    if (
        previous.key_usage != model.key_usage
        or previous.key_spec != model.key_spec
        or previous.origin != model.origin
        or previous.multi_region != model.multi_region
    ):
        raise invalid_request(VALIDATE_RESOURCE_MODEL, IMMUTABLE_PROPERTIES_MESSAGE)


def is_listable_key(metadata: Mapping[str, Any]) -> bool:
    """Customer-managed keys that are single-region or multi-region primaries."""
    if metadata.get("KeyManager") != "CUSTOMER":
        return False
    if not metadata.get("MultiRegion"):
        return True
    key_type = metadata.get("MultiRegionConfiguration", {}).get("MultiRegionKeyType")
    return key_type == "PRIMARY"


class KeyHandler(BaseHandler):
    """Common wiring for Key handlers."""

    resource_type = RESOURCE_TYPE

    def translator(self) -> KeyTranslator:
        return KeyTranslator()

    def _desired(self, request: HandlerRequest) -> KeyModel:
        return self._model(request.desired_resource_state, KeyModel) or KeyModel()

    @staticmethod
    def _require_key_id(model: KeyModel, operation: str) -> None:
        if not model.key_id:
            raise not_found(operation, None)


class KeyCreateHandler(KeyHandler):
    """Create the key, set rotation and enabled state, then wait for propagation."""

    action = "create"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request).apply_defaults()
        validate_resource_model(None, model)
        tags = desired_resource_tags(model, request.desired_resource_tags)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.create_key(model, context, tags))
            .then(lambda o: orchestrator.update_key_rotation(None, model, context))
            .then(lambda o: orchestrator.disable_key_if_necessary(None, model, context))
            .then(lambda o: orchestrator.propagation.set_request_type(o, False))
            .then(orchestrator.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success(model.redact_write_only()))
        )


class KeyReadHandler(KeyHandler):
    """Describe the key and enrich the model with policy, rotation and tags."""

    action = "read"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_key_id(model, "ReadKey")

        def soft_fail(fn):
            return lambda o: orchestrator.soft_fail_access_denied(fn, model, context)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.describe_key(model, context, update_model=True))
            .then(soft_fail(lambda: orchestrator.get_key_policy(model, context)))
            .then(soft_fail(lambda: orchestrator.get_key_rotation_status(model, context)))
            .then(
                soft_fail(
                    lambda: orchestrator.retrieve_resource_tags(model, context, update_model=True)
                )
            )
            .then(lambda o: Outcome.success(model.redact_write_only()))
        )


class KeyUpdateHandler(KeyHandler):
    """Bring an existing key to the desired state.

    Order matters: enabling comes first (with a wait) so rotation can be
    changed, and disabling comes after rotation for the same reason.
    """

    action = "update"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request).apply_defaults()
        previous = self._model(request.previous_resource_state, KeyModel)
        if previous is not None:
            previous.apply_defaults()
            if not model.key_id:
                model.key_id = previous.key_id
                model.arn = model.arn or previous.arn

        validate_resource_model(previous, model)
        self._require_key_id(model, "UpdateKey")
        tags = desired_resource_tags(model, request.desired_resource_tags)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.describe_key(model, context, update_model=False))
            .then(lambda o: orchestrator.enable_key_if_necessary(previous, model, context, True))
            .then(lambda o: orchestrator.update_key_rotation(previous, model, context))
            .then(lambda o: orchestrator.disable_key_if_necessary(previous, model, context))
            .then(lambda o: orchestrator.update_key_description(previous, model, context))
            .then(lambda o: orchestrator.update_key_policy(previous, model, context))
            .then(lambda o: orchestrator.update_key_tags(model, tags, context))
            .then(orchestrator.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success(model.redact_write_only()))
        )


class KeyDeleteHandler(KeyHandler):
    action = "delete"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_key_id(model, "DeleteKey")
        return orchestrator.delete_key(model, context)


class KeyListHandler(KeyHandler):
    action = "list"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        return orchestrator.list_keys_and_filter_by_metadata(request.next_token, is_listable_key)


HANDLERS: dict[str, type[KeyHandler]] = {
    "create": KeyCreateHandler,
    "read": KeyReadHandler,
    "update": KeyUpdateHandler,
    "delete": KeyDeleteHandler,
    "list": KeyListHandler,
}
