"""Key and alias lifecycle sub-operations shared by every resource variant.

Each method is one link in a handler's chain: it takes the model and the
callback context, runs zero or more steps, and returns an Outcome. Methods
are safe to re-run on replay: completion flags and the engine's call
bookkeeping keep already-done work from being repeated.

CONTEXT FLAGS:
- key_enabled:        enable-key was issued
- rotation_updated:   key rotation was reconciled
- key_policy_updated: put-key-policy was issued
- propagation_complete: the final propagation wait was advised
- pre_create_check_done: the alias name was confirmed free
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from .api import CREATE_ALIAS, DESCRIBE_KEY, LIST_ALIASES, KmsApi
from .backoff import CappedExponentialBackoff, retry_on
from .clients import KmsClientFactory
from .config import Config
from .errors import INVALID_STATE_EXCEPTION, ErrorCode, HandlerError, not_found
from .engine import Outcome, Step, StepEngine
from .models import CallbackContext, KeyState, is_deletion_pending
from .propagation import PropagationDelayPolicy
from .tags import tags_to_add, tags_to_remove, to_tag_set
from .translator import (
    AliasResource,
    CreatableResource,
    ReplicableResource,
    ResourceTranslator,
    RotatableResource,
    deserialize_policy,
    normalize_policy,
    tags_from_sdk,
)

logger = logging.getLogger(__name__)

MetadataPredicate = Callable[[Mapping[str, Any]], bool]

# ListAliases accepts at most this many entries per page
MAX_LIST_ALIASES_LIMIT = 100


class KeyOrchestrator:
    """Composes API calls, engine steps and policies into key sub-operations."""

    def __init__(
        self,
        translator: ResourceTranslator,
        client_factory: KmsClientFactory,
        config: Config | None = None,
        region: str | None = None,
    ) -> None:
        """Initialize for one invocation.

        Args:
            translator: Variant-specific field translation.
            client_factory: Source of regional KMS clients.
            config: Controller configuration.
            region: Region the handler runs in; the factory default if omitted.
        """
        self._config = config or Config()
        self._translator = translator
        self._client_factory = client_factory
        self._region = region or client_factory.default_region
        self._api = KmsApi(client_factory.get_client(self._region))
        self._engine = StepEngine(self._config)
        self._backoff = CappedExponentialBackoff.from_config(self._config)
        self.propagation = PropagationDelayPolicy.from_config(self._config)

    @property
    def region(self) -> str:
        return self._region

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def describe_key(self, model: Any, context: CallbackContext, update_model: bool) -> Outcome:
        """Fetch key metadata; a key pending deletion counts as not found.

        Raises:
            HandlerError: NotFound if the key is gone or pending deletion. The
                model is left untouched in that case.
        """

        def apply(response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            metadata = response["KeyMetadata"]
            if is_deletion_pending(metadata.get("KeyState")):
                raise not_found(DESCRIBE_KEY, metadata.get("KeyId"))
            if update_model:
                self._translator.set_key_metadata(model, metadata)
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::describe-key",
                build_request=self._translator.describe_key_request,
                invoke=self._api.describe_key,
                apply_response=apply,
            ),
            model,
            context,
        )

    def get_key_policy(self, model: Any, context: CallbackContext) -> Outcome:
        def apply(response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            self._translator.set_key_policy(model, deserialize_policy(response.get("Policy")))
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::get-key-policy",
                build_request=self._translator.get_key_policy_request,
                invoke=self._api.get_key_policy,
                apply_response=apply,
            ),
            model,
            context,
        )

    def get_key_rotation_status(self, model: Any, context: CallbackContext) -> Outcome:
        """Fetch rotation status. Keys that cannot rotate report False without a call."""
        translator = self._require(RotatableResource)
        if not model.supports_rotation:
            model.enable_key_rotation = False
            return Outcome.progress(model, context)

        def apply(response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            translator.set_rotation_status(model, response)
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::get-key-rotation-status",
                build_request=translator.get_key_rotation_status_request,
                invoke=self._api.get_key_rotation_status,
                apply_response=apply,
            ),
            model,
            context,
        )

    def retrieve_resource_tags(
        self, model: Any, context: CallbackContext, update_model: bool
    ) -> Outcome:
        """List every tag page into context.existing_tags.

        Pages are followed in-process until the marker runs out, so one call
        returns the complete tag set.
        """
        if context.tag_marker is None:
            # Start every listing from an empty set
            context.existing_tags = set()

        def apply(response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            existing = context.existing_tags or set()
            existing |= tags_from_sdk(response.get("Tags", []))
            context.existing_tags = existing
            context.tag_marker = response.get("NextMarker") if response.get("Truncated") else None
            return Outcome.progress(model, context)

        outcome = Outcome.progress(model, context)
        while True:
            marker = context.tag_marker
            outcome = self._engine.run(
                Step(
                    name="kms::list-tag-key",
                    build_request=lambda m, marker=marker: (
                        self._translator.list_resource_tags_request(m, marker)
                    ),
                    invoke=self._api.list_resource_tags,
                    apply_response=apply,
                ),
                model,
                context,
            )
            if not outcome.can_continue or context.tag_marker is None:
                break
            logger.debug("Fetching next tag page", extra={"marker": context.tag_marker})

        if update_model and outcome.can_continue:
            self._translator.set_tags(model, context.existing_tags or set())
        return outcome

    def list_keys_and_filter_by_metadata(
        self, next_token: str | None, predicate: MetadataPredicate
    ) -> Outcome:
        """One page of keys, keeping those whose metadata matches the predicate.

        Keys pending deletion are always dropped.
        """
        response = self._api.list_keys(
            self._translator.list_keys_request(next_token, self._config.list_keys_page_size)
        )
        models = []
        for entry in response.get("Keys", []):
            described = self._api.describe_key(
                self._translator.describe_key_by_id_request(entry["KeyId"])
            )
            metadata = described["KeyMetadata"]
            if is_deletion_pending(metadata.get("KeyState")) or not predicate(metadata):
                continue
            models.append(self._translator.from_key_list_entry(entry))

        token = response.get("NextMarker") if response.get("Truncated") else None
        logger.info("Listed keys", extra={"count": len(models), "has_more": token is not None})
        return Outcome.listed(models, token)

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def update_key_description(
        self, previous: Any | None, model: Any, context: CallbackContext
    ) -> Outcome:
        previous_description = (previous.description if previous else None) or ""
        if previous_description == (model.description or ""):
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::update-key-description",
                build_request=self._translator.update_key_description_request,
                invoke=self._api.update_key_description,
                once=True,
            ),
            model,
            context,
        )

    def update_key_policy(
        self, previous: Any | None, model: Any, context: CallbackContext
    ) -> Outcome:
        """Put the key policy if it changed, then wait for it to propagate."""
        previous_policy = normalize_policy(previous.key_policy if previous else None)
        if context.key_policy_updated or previous_policy == normalize_policy(model.key_policy):
            return Outcome.progress(model, context)

        context.key_policy_updated = True
        delay = self._config.propagation_delay_update_seconds
        return self._engine.run(
            Step(
                name="kms::update-key-policy",
                build_request=self._translator.put_key_policy_request,
                invoke=self._api.put_key_policy,
                apply_response=lambda _r, m, c: Outcome.progress(m, c, delay),
            ),
            model,
            context,
        )

    def enable_key_if_necessary(
        self,
        previous: Any | None,
        model: Any,
        context: CallbackContext,
        use_delay: bool,
    ) -> Outcome:
        """Enable a key going from disabled to enabled.

        Args:
            use_delay: Suspend for propagation after enabling. Updates need it
                so later steps see the key enabled.
        """
        was_enabled = previous is None or bool(previous.enabled)
        if was_enabled or not model.enabled or context.key_enabled:
            return Outcome.progress(model, context)

        context.key_enabled = True
        delay = self._config.propagation_delay_update_seconds if use_delay else 0
        return self._engine.run(
            Step(
                name="kms::enable-key",
                build_request=self._translator.enable_key_request,
                invoke=self._api.enable_key,
                apply_response=lambda _r, m, c: Outcome.progress(m, c, delay),
            ),
            model,
            context,
        )

    def disable_key_if_necessary(
        self, previous: Any | None, model: Any, context: CallbackContext
    ) -> Outcome:
        """Disable a key going from enabled to disabled.

        A freshly created or replicated key may not be visible yet, so NotFound
        is retried with capped exponential backoff.
        """
        was_enabled = previous is None or bool(previous.enabled)
        if not was_enabled or model.enabled:
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::disable-key",
                build_request=self._translator.disable_key_request,
                invoke=self._api.disable_key,
                retry_filter=retry_on(ErrorCode.NOT_FOUND),
                backoff=self._backoff,
                once=True,
            ),
            model,
            context,
        )

    def update_key_rotation(
        self, previous: Any | None, model: Any, context: CallbackContext
    ) -> Outcome:
        """Turn rotation on or off, or change its period."""
        translator = self._require(RotatableResource)
        if context.rotation_updated:
            return Outcome.progress(model, context)

        should_be_enabled = bool(model.enable_key_rotation)
        was_enabled = previous is not None and bool(previous.enable_key_rotation)
        period_changed = (
            was_enabled
            and should_be_enabled
            and previous.rotation_period_in_days != model.rotation_period_in_days
        )

        def mark_done(_response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            context.rotation_updated = True
            return Outcome.progress(model, context)

        if (not was_enabled and should_be_enabled) or period_changed:
            step = Step(
                name="kms::enable-key-rotation",
                build_request=translator.enable_key_rotation_request,
                invoke=self._api.enable_key_rotation,
                apply_response=mark_done,
                # A key created moments ago may not be visible yet
                retry_filter=retry_on(ErrorCode.NOT_FOUND),
                backoff=self._backoff,
            )
        elif was_enabled and not should_be_enabled:
            step = Step(
                name="kms::disable-key-rotation",
                build_request=translator.disable_key_rotation_request,
                invoke=self._api.disable_key_rotation,
                apply_response=mark_done,
            )
        else:
            return Outcome.progress(model, context)

        return self._engine.run(step, model, context)

    def update_key_tags(
        self, model: Any, desired: Mapping[str, str], context: CallbackContext
    ) -> Outcome:
        """Reconcile remote tags to the desired map: untag removals, then tag additions."""
        desired_tags = to_tag_set(desired)

        def untag(outcome: Outcome) -> Outcome:
            to_remove = tags_to_remove(context.existing_tags or set(), desired_tags)
            if not to_remove:
                return outcome
            return self._engine.run(
                Step(
                    name="kms::untag-key",
                    build_request=lambda m: self._translator.untag_resource_request(m, to_remove),
                    invoke=self._api.untag_resource,
                ),
                model,
                context,
            )

        def tag(outcome: Outcome) -> Outcome:
            to_add = tags_to_add(context.existing_tags or set(), desired_tags)
            if not to_add:
                return outcome
            return self._engine.run(
                Step(
                    name="kms::tag-key",
                    build_request=lambda m: self._translator.tag_resource_request(m, to_add),
                    invoke=self._api.tag_resource,
                ),
                model,
                context,
            )

        return self.retrieve_resource_tags(model, context, update_model=False).then(untag).then(tag)

    # -------------------------------------------------------------------------
    # Create / delete
    # -------------------------------------------------------------------------

    def create_key(
        self, model: Any, context: CallbackContext, tags: Mapping[str, str]
    ) -> Outcome:
        """Create the key once and record its read-only metadata."""
        translator = self._require(CreatableResource)

        def apply(response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            # Writable fields stay as declared, only identifiers come back
            if not model.key_id:
                translator.set_created_key_metadata(model, response["KeyMetadata"])
            logger.info("Created key", extra={"key_id": model.key_id})
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::create-key",
                build_request=lambda m: translator.create_key_request(m, tags),
                invoke=self._api.create_key,
                apply_response=apply,
                once=True,
            ),
            model,
            context,
        )

    def replicate_key(
        self, model: Any, context: CallbackContext, tags: Mapping[str, str]
    ) -> Outcome:
        """Replicate the primary key into this region and wait until it exists.

        The replicate call goes to the primary key's region; the replica is
        then polled in this region until it leaves the Creating state.
        """
        translator = self._require(ReplicableResource)
        delay = self._config.propagation_delay_update_seconds

        def apply(response: dict[str, Any], model: Any, context: CallbackContext) -> Outcome:
            translator.set_replica_key_metadata(model, response["ReplicaKeyMetadata"])
            logger.info("Replicated key", extra={"key_id": model.key_id, "region": self._region})
            return Outcome.progress(model, context, delay)

        def replicate(request: dict[str, Any]) -> dict[str, Any]:
            primary_api = KmsApi(self._client_factory.get_client_for_arn(model.primary_key_arn))
            return primary_api.replicate_key(request)

        outcome = self._engine.run(
            Step(
                name="kms::replicate-key",
                build_request=lambda m: translator.replicate_key_request(m, self._region, tags),
                invoke=replicate,
                apply_response=apply,
                once=True,
            ),
            model,
            context,
        )
        return outcome.then(
            lambda o: self._engine.run(
                Step(
                    name="kms::wait-for-replica",
                    build_request=lambda m: {},
                    invoke=lambda _request: {},
                    stabilize=self._is_replica_created,
                ),
                model,
                context,
            )
        )

    def _is_replica_created(self, model: Any, context: CallbackContext) -> bool:
        try:
            response = self._api.describe_key(self._translator.describe_key_request(model))
        except HandlerError as e:
            if e.code == ErrorCode.NOT_FOUND:
                # Not visible in this region yet
                return False
            raise
        return response["KeyMetadata"].get("KeyState") != KeyState.CREATING

    def delete_key(self, model: Any, context: CallbackContext) -> Outcome:
        """Schedule deletion once, wait until it shows, then propagate.

        A key already pending deletion (or otherwise in an invalid state for
        deletion) is reported as NotFound.
        """
        try:
            outcome = self._engine.run(
                Step(
                    name="kms::delete-key",
                    build_request=self._translator.schedule_key_deletion_request,
                    invoke=self._api.schedule_key_deletion,
                    stabilize=self._is_deleted,
                ),
                model,
                context,
            )
        except HandlerError as e:
            if e.code == ErrorCode.INVALID_REQUEST and e.cause_code == INVALID_STATE_EXCEPTION:
                logger.info("Key already deleted", extra={"key_id": model.key_id})
                return Outcome.failed(ErrorCode.NOT_FOUND, str(e))
            raise

        return (
            outcome.then(lambda o: self.propagation.set_request_type(o, False))
            .then(self.propagation.wait_for_changes_to_propagate)
            .then(lambda o: Outcome.success())
        )

    def _is_deleted(self, model: Any, context: CallbackContext) -> bool:
        response = self._api.describe_key(self._translator.describe_key_request(model))
        return is_deletion_pending(response["KeyMetadata"].get("KeyState"))

    # -------------------------------------------------------------------------
    # Alias
    # -------------------------------------------------------------------------

    def check_alias_absent(self, model: Any, context: CallbackContext) -> Outcome:
        """Fail with AlreadyExists if the alias name already resolves to a key.

        DescribeKey accepts an alias name. AccessDenied on it still means the
        alias exists.
        """
        translator = self._require(AliasResource)
        if context.pre_create_check_done:
            return Outcome.progress(model, context)

        try:
            self._api.describe_key(translator.describe_alias_request(model))
        except HandlerError as e:
            if e.code == ErrorCode.NOT_FOUND:
                context.pre_create_check_done = True
                return Outcome.progress(model, context)
            if e.code != ErrorCode.ACCESS_DENIED:
                raise
        raise HandlerError(
            ErrorCode.ALREADY_EXISTS, CREATE_ALIAS, f"Alias '{model.alias_name}' already exists"
        )

    def create_alias(self, model: Any, context: CallbackContext) -> Outcome:
        translator = self._require(AliasResource)

        def create(request: dict[str, Any]) -> dict[str, Any]:
            try:
                return self._api.create_alias(request)
            except HandlerError as e:
                # The alias was absent at the pre-create check, so this is our own earlier call
                if e.code != ErrorCode.ALREADY_EXISTS:
                    raise
                logger.info("Alias already created", extra={"alias_name": model.alias_name})
                return {}

        return self._engine.run(
            Step(
                name="kms::create-alias",
                build_request=translator.create_alias_request,
                invoke=create,
                once=True,
            ),
            model,
            context,
        )

    def update_alias(self, previous: Any | None, model: Any, context: CallbackContext) -> Outcome:
        """Point the alias at the desired target key, if it changed."""
        translator = self._require(AliasResource)
        if previous is not None and previous.target_key_id == model.target_key_id:
            return Outcome.progress(model, context)

        return self._engine.run(
            Step(
                name="kms::update-alias",
                build_request=translator.update_alias_request,
                invoke=self._api.update_alias,
                once=True,
            ),
            model,
            context,
        )

    def delete_alias(self, model: Any, context: CallbackContext) -> Outcome:
        """Delete the alias.

        An invalid-state error here is transient, so it is reported as a
        service error the harness may retry.
        """
        translator = self._require(AliasResource)
        try:
            outcome = self._engine.run(
                Step(
                    name="kms::delete-alias",
                    build_request=translator.delete_alias_request,
                    invoke=self._api.delete_alias,
                    once=True,
                ),
                model,
                context,
            )
        except HandlerError as e:
            if e.code == ErrorCode.INVALID_REQUEST and e.cause_code == INVALID_STATE_EXCEPTION:
                raise HandlerError(
                    ErrorCode.SERVICE_INTERNAL_ERROR, e.operation, str(e), e.cause
                ) from e
            raise

        return outcome.then(lambda o: Outcome.success())

    def list_aliases(
        self,
        next_token: str | None,
        target_key_id: str | None,
        predicate: MetadataPredicate,
    ) -> Outcome:
        """One page of aliases, optionally only those pointing at target_key_id."""
        translator = self._require(AliasResource)
        limit = min(self._config.list_keys_page_size, MAX_LIST_ALIASES_LIMIT)
        response = self._api.list_aliases(
            translator.list_aliases_request(target_key_id, next_token, limit)
        )
        models = [
            translator.from_alias_list_entry(entry)
            for entry in response.get("Aliases", [])
            if predicate(entry)
        ]

        token = response.get("NextMarker") if response.get("Truncated") else None
        logger.info("Listed aliases", extra={"count": len(models), "has_more": token is not None})
        return Outcome.listed(models, token)

    def find_alias(self, model: Any) -> Outcome:
        """Page through every alias until model's alias name turns up.

        Raises:
            HandlerError: NotFound if no page holds the alias.
        """
        translator = self._require(AliasResource)
        limit = min(self._config.list_keys_page_size, MAX_LIST_ALIASES_LIMIT)
        marker = None
        while True:
            response = self._api.list_aliases(translator.list_aliases_request(None, marker, limit))
            for entry in response.get("Aliases", []):
                if entry["AliasName"] == model.alias_name:
                    return Outcome.success(translator.from_alias_list_entry(entry))
            marker = response.get("NextMarker") if response.get("Truncated") else None
            if marker is None:
                raise HandlerError(
                    ErrorCode.NOT_FOUND,
                    LIST_ALIASES,
                    f"Alias '{model.alias_name}' was not found",
                )

    # -------------------------------------------------------------------------
    # Wrappers
    # -------------------------------------------------------------------------

    def soft_fail_access_denied(
        self, fn: Callable[[], Outcome], model: Any, context: CallbackContext
    ) -> Outcome:
        """Run a read-only enrichment step, tolerating AccessDenied.

        Tagging and rotation were added to keys after many existing roles were
        written, and those roles may deny the newer read calls.
        """
        if not self._config.soft_fail_access_denied:
            return fn()
        try:
            return fn()
        except HandlerError as e:
            if e.code != ErrorCode.ACCESS_DENIED:
                raise
            logger.warning(
                "Access denied on read enrichment, skipping",
                extra={"operation": e.operation},
            )
            return Outcome.progress(model, context)

    def _require(self, protocol: type) -> Any:
        if not isinstance(self._translator, protocol):
            raise TypeError(
                f"{type(self._translator).__name__} does not implement {protocol.__name__}"
            )
        return self._translator
