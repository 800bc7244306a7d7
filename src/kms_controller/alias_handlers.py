"""Handlers for the Alias resource variant.

An alias is a friendly name for a key in the same account and region. The
alias name identifies the resource and cannot change; only the target key
can be updated. Aliases carry no tags, policy or enabled state of their own.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .engine import Outcome
from .errors import invalid_request
from .handler import BaseHandler
from .models import RESERVED_ALIAS_PREFIX, AliasModel, CallbackContext, HandlerRequest
from .orchestrator import KeyOrchestrator
from .translator import AliasTranslator

RESOURCE_TYPE = "AWS::KMS::Alias"

VALIDATE_ALIAS = "ValidateAlias"

ALIAS_NAME_REQUIRED_MESSAGE = "AliasName is required"
TARGET_KEY_REQUIRED_MESSAGE = "TargetKeyId is required"
ALIAS_NAME_IMMUTABLE_MESSAGE = "You cannot change the AliasName property of an AWS::KMS::Alias."


def is_customer_alias(entry: Mapping[str, Any]) -> bool:
    """Aliases a stack can own; those under alias/aws/ belong to AWS managed keys."""
    return not entry.get("AliasName", "").startswith(RESERVED_ALIAS_PREFIX)


class AliasHandler(BaseHandler):
    """Common wiring for Alias handlers."""

    resource_type = RESOURCE_TYPE

    def translator(self) -> AliasTranslator:
        return AliasTranslator()

    def _desired(self, request: HandlerRequest) -> AliasModel:
        return self._model(request.desired_resource_state, AliasModel) or AliasModel()

    @staticmethod
    def _require_alias_name(model: AliasModel) -> None:
        if not model.alias_name:
            raise invalid_request(VALIDATE_ALIAS, ALIAS_NAME_REQUIRED_MESSAGE)

    @staticmethod
    def _require_target_key(model: AliasModel) -> None:
        if not model.target_key_id:
            raise invalid_request(VALIDATE_ALIAS, TARGET_KEY_REQUIRED_MESSAGE)


class AliasCreateHandler(AliasHandler):
    """Confirm the name is free, create the alias, then wait for propagation."""

    action = "create"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_alias_name(model)
        self._require_target_key(model)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.check_alias_absent(model, context))
            .then(lambda o: orchestrator.create_alias(model, context))
            .then(lambda o: orchestrator.propagation.set_request_type(o, False))
            .then(orchestrator.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success(model))
        )


class AliasReadHandler(AliasHandler):
    action = "read"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_alias_name(model)
        return orchestrator.find_alias(model)


class AliasUpdateHandler(AliasHandler):
    """Point the alias at a new target key, then wait for propagation."""

    action = "update"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        previous = self._model(request.previous_resource_state, AliasModel)
        if previous is not None and not model.alias_name:
            model.alias_name = previous.alias_name
        self._require_alias_name(model)
        self._require_target_key(model)
        if previous is not None and previous.alias_name != model.alias_name:
            raise invalid_request(VALIDATE_ALIAS, ALIAS_NAME_IMMUTABLE_MESSAGE)

        return (
            Outcome.progress(model, context)
            .then(lambda o: orchestrator.update_alias(previous, model, context))
            .then(orchestrator.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success(model))
        )


class AliasDeleteHandler(AliasHandler):
    action = "delete"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        self._require_alias_name(model)
        return orchestrator.delete_alias(model, context)


class AliasListHandler(AliasHandler):
    """One page of customer aliases, narrowed to a target key when the model names one."""

    action = "list"

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        model = self._desired(request)
        return orchestrator.list_aliases(request.next_token, model.target_key_id, is_customer_alias)


HANDLERS: dict[str, type[AliasHandler]] = {
    "create": AliasCreateHandler,
    "read": AliasReadHandler,
    "update": AliasUpdateHandler,
    "delete": AliasDeleteHandler,
    "list": AliasListHandler,
}
