"""Tests for key sub-operations against the in-memory KMS."""

import json

import pytest

from kms_controller.config import Config
from kms_controller.engine import OperationStatus, Outcome
from kms_controller.errors import ErrorCode, HandlerError
from kms_controller.key_handlers import is_listable_key
from kms_controller.models import CallbackContext, KeyModel, ReplicaKeyModel, Tag
from kms_controller.orchestrator import KeyOrchestrator
from kms_controller.translator import KeyTranslator, ReplicaKeyTranslator
from kms_mock import DEFAULT_POLICY, MockClientFactory, MockKmsClient


@pytest.fixture
def orchestrator(factory: MockClientFactory, config: Config) -> KeyOrchestrator:
    return KeyOrchestrator(KeyTranslator(), factory, config)


class TestDescribeKey:
    """Tests for describe_key()."""

    def test_updates_model(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that metadata is copied into the model when asked to."""
        key = kms.add_key(description="app key", enabled=False, key_state="Disabled")
        model = KeyModel(key_id=key.key_id)

        outcome = orchestrator.describe_key(model, CallbackContext(), update_model=True)

        assert outcome.can_continue
        assert model.arn == key.arn
        assert model.description == "app key"
        assert model.enabled is False

    def test_leaves_model_alone(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that an existence check does not touch the model."""
        key = kms.add_key(description="remote")
        model = KeyModel(key_id=key.key_id, description="desired")

        orchestrator.describe_key(model, CallbackContext(), update_model=False)

        assert model.description == "desired"

    @pytest.mark.parametrize("state", ["PendingDeletion", "PendingReplicaDeletion"])
    def test_pending_deletion_is_not_found(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient, state: str
    ) -> None:
        """Test that a key scheduled for deletion is reported missing."""
        key = kms.add_key(key_state=state, enabled=False)
        model = KeyModel(key_id=key.key_id)

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.describe_key(model, CallbackContext(), update_model=True)

        assert exc_info.value.code == ErrorCode.NOT_FOUND
        assert model.arn is None

    def test_missing_key_is_not_found(self, orchestrator: KeyOrchestrator) -> None:
        """Test that an unknown key id maps to NotFound."""
        with pytest.raises(HandlerError) as exc_info:
            orchestrator.describe_key(KeyModel(key_id="nope"), CallbackContext(), True)

        assert exc_info.value.code == ErrorCode.NOT_FOUND


class TestReadEnrichment:
    """Tests for get_key_policy(), get_key_rotation_status() and retrieve_resource_tags()."""

    def test_get_key_policy_as_dict(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that the policy is returned as a document."""
        key = kms.add_key()
        model = KeyModel(key_id=key.key_id)

        orchestrator.get_key_policy(model, CallbackContext())

        assert model.key_policy == json.loads(DEFAULT_POLICY)

    def test_rotation_status(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that rotation status and period are read."""
        key = kms.add_key(rotation_enabled=True, rotation_period_in_days=180)
        model = KeyModel(key_id=key.key_id)

        orchestrator.get_key_rotation_status(model, CallbackContext())

        assert model.enable_key_rotation is True
        assert model.rotation_period_in_days == 180

    def test_rotation_status_skipped_for_asymmetric_keys(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that keys that cannot rotate report False without a call."""
        key = kms.add_key(key_spec="RSA_2048", key_usage="SIGN_VERIFY")
        model = KeyModel(key_id=key.key_id, key_spec="RSA_2048")

        orchestrator.get_key_rotation_status(model, CallbackContext())

        assert model.enable_key_rotation is False
        assert kms.call_count("GetKeyRotationStatus") == 0

    def test_rotation_needs_rotatable_translator(self, factory: MockClientFactory) -> None:
        """Test that replica translators cannot be asked for rotation."""
        orchestrator = KeyOrchestrator(ReplicaKeyTranslator(), factory)

        with pytest.raises(TypeError):
            orchestrator.get_key_rotation_status(ReplicaKeyModel(key_id="k"), CallbackContext())

    def test_tags_exhaust_every_page(self) -> None:
        """Test that one call follows the marker through every tag page."""
        factory = MockClientFactory(tag_page_size=2)
        kms = factory.get_client()
        key = kms.add_key(tags={f"k{i}": str(i) for i in range(5)})
        orchestrator = KeyOrchestrator(KeyTranslator(), factory)
        model = KeyModel(key_id=key.key_id)
        context = CallbackContext()

        outcome = orchestrator.retrieve_resource_tags(model, context, update_model=True)

        assert outcome.can_continue
        assert kms.call_count("ListResourceTags") == 3
        assert [c.get("Marker") for c in kms.calls_to("ListResourceTags")] == [None, "2", "4"]
        assert context.existing_tags == {Tag(key=f"k{i}", value=str(i)) for i in range(5)}
        assert context.tag_marker is None
        assert [t.key for t in model.tags] == ["k0", "k1", "k2", "k3", "k4"]

    def test_tags_listing_starts_fresh(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that tags left in the context by an earlier run are discarded."""
        key = kms.add_key(tags={"env": "prod"})
        context = CallbackContext(existing_tags={Tag(key="env", value="dev")})

        orchestrator.retrieve_resource_tags(KeyModel(key_id=key.key_id), context, False)

        assert context.existing_tags == {Tag(key="env", value="prod")}


class TestSoftFailAccessDenied:
    """Tests for soft_fail_access_denied()."""

    def test_access_denied_is_tolerated(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that AccessDenied on an enrichment read continues with the model as is."""
        key = kms.add_key()
        kms.fail("GetKeyPolicy", "AccessDeniedException")
        model = KeyModel(key_id=key.key_id)
        context = CallbackContext()

        outcome = orchestrator.soft_fail_access_denied(
            lambda: orchestrator.get_key_policy(model, context), model, context
        )

        assert outcome.can_continue
        assert model.key_policy is None

    def test_other_errors_propagate(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that only AccessDenied is softened."""
        key = kms.add_key()
        kms.fail("GetKeyPolicy", "KMSInternalException")
        model = KeyModel(key_id=key.key_id)
        context = CallbackContext()

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.soft_fail_access_denied(
                lambda: orchestrator.get_key_policy(model, context), model, context
            )

        assert exc_info.value.code == ErrorCode.SERVICE_INTERNAL_ERROR

    def test_disabled_by_config(self, factory: MockClientFactory, kms: MockKmsClient) -> None:
        """Test that soft failing can be switched off."""
        orchestrator = KeyOrchestrator(
            KeyTranslator(), factory, Config(soft_fail_access_denied=False)
        )
        key = kms.add_key()
        kms.fail("GetKeyPolicy", "AccessDeniedException")
        model = KeyModel(key_id=key.key_id)
        context = CallbackContext()

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.soft_fail_access_denied(
                lambda: orchestrator.get_key_policy(model, context), model, context
            )

        assert exc_info.value.code == ErrorCode.ACCESS_DENIED


class TestListKeys:
    """Tests for list_keys_and_filter_by_metadata()."""

    def test_filters_by_metadata(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that AWS-managed keys, replicas and deleted keys are dropped."""
        single = kms.add_key("single")
        kms.add_key("aws-managed", key_manager="AWS")
        primary = kms.add_key("mrk-primary", multi_region=True, multi_region_key_type="PRIMARY")
        kms.add_key(
            "mrk-replica",
            multi_region=True,
            multi_region_key_type="REPLICA",
            primary_arn="arn:aws:kms:eu-west-1:111122223333:key/mrk-replica",
        )
        kms.add_key("deleted", key_state="PendingDeletion", enabled=False)

        outcome = orchestrator.list_keys_and_filter_by_metadata(None, is_listable_key)

        assert outcome.status == OperationStatus.SUCCESS
        assert [m.key_id for m in outcome.resource_models] == [single.key_id, primary.key_id]
        assert outcome.resource_models[0].arn == single.arn
        assert outcome.next_token is None

    def test_pagination(self, factory: MockClientFactory, kms: MockKmsClient) -> None:
        """Test that the next token resumes where the page ended."""
        orchestrator = KeyOrchestrator(KeyTranslator(), factory, Config(list_keys_page_size=2))
        for name in ("a", "b", "c"):
            kms.add_key(name)

        first = orchestrator.list_keys_and_filter_by_metadata(None, is_listable_key)
        second = orchestrator.list_keys_and_filter_by_metadata(first.next_token, is_listable_key)

        assert [m.key_id for m in first.resource_models] == ["a", "b"]
        assert first.next_token == "2"
        assert [m.key_id for m in second.resource_models] == ["c"]
        assert second.next_token is None


class TestUpdateOperations:
    """Tests for description, policy and enabled-state updates."""

    def test_description_unchanged_makes_no_call(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that an unchanged description is not re-sent."""
        key = kms.add_key(description="same")
        previous = KeyModel(key_id=key.key_id, description="same")

        orchestrator.update_key_description(
            previous, KeyModel(key_id=key.key_id, description="same"), CallbackContext()
        )

        assert kms.call_count("UpdateKeyDescription") == 0

    def test_description_updated_once(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that a changed description is sent once, even on replay."""
        key = kms.add_key(description="old")
        previous = KeyModel(key_id=key.key_id, description="old")
        model = KeyModel(key_id=key.key_id, description="new")
        context = CallbackContext()

        orchestrator.update_key_description(previous, model, context)
        orchestrator.update_key_description(previous, model, context)

        assert kms.call_count("UpdateKeyDescription") == 1
        assert key.description == "new"

    def test_policy_update_suspends_for_propagation(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that a changed policy is put once and followed by a 60s wait."""
        key = kms.add_key()
        new_policy = {"Version": "2012-10-17", "Statement": []}
        previous = KeyModel(key_id=key.key_id, key_policy=DEFAULT_POLICY)
        model = KeyModel(key_id=key.key_id, key_policy=new_policy)
        context = CallbackContext()

        first = orchestrator.update_key_policy(previous, model, context)
        second = orchestrator.update_key_policy(previous, model, context)

        assert first.callback_delay_seconds == 60
        assert context.key_policy_updated is True
        assert second.can_continue
        assert kms.call_count("PutKeyPolicy") == 1
        assert json.loads(key.policy) == new_policy

    def test_equivalent_policy_makes_no_call(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that the string and dict form of the same policy are not a change."""
        key = kms.add_key()
        previous = KeyModel(key_id=key.key_id, key_policy=DEFAULT_POLICY)
        model = KeyModel(key_id=key.key_id, key_policy=json.loads(DEFAULT_POLICY))

        outcome = orchestrator.update_key_policy(previous, model, CallbackContext())

        assert outcome.can_continue
        assert kms.call_count("PutKeyPolicy") == 0

    def test_malformed_policy_is_invalid_request(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that KMS rejecting a policy without a message still explains itself."""
        key = kms.add_key()
        model = KeyModel(key_id=key.key_id, key_policy="{not json")

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.update_key_policy(None, model, CallbackContext())

        assert exc_info.value.code == ErrorCode.INVALID_REQUEST
        assert str(exc_info.value) == "PutKeyPolicy failed due to MalformedPolicyDocumentException"

    def test_enable_with_delay(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that enabling a disabled key suspends for propagation once."""
        key = kms.add_key(enabled=False, key_state="Disabled")
        previous = KeyModel(key_id=key.key_id, enabled=False)
        model = KeyModel(key_id=key.key_id, enabled=True)
        context = CallbackContext()

        first = orchestrator.enable_key_if_necessary(previous, model, context, use_delay=True)
        second = orchestrator.enable_key_if_necessary(previous, model, context, use_delay=True)

        assert first.callback_delay_seconds == 60
        assert second.can_continue
        assert kms.call_count("EnableKey") == 1
        assert key.enabled is True

    def test_enable_without_delay(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that replicas enable without waiting."""
        key = kms.add_key(enabled=False, key_state="Disabled")

        outcome = orchestrator.enable_key_if_necessary(
            KeyModel(enabled=False),
            KeyModel(key_id=key.key_id, enabled=True),
            CallbackContext(),
            use_delay=False,
        )

        assert outcome.can_continue
        assert key.enabled is True

    def test_enable_skipped_on_create(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that a key with no previous state is never enabled explicitly."""
        outcome = orchestrator.enable_key_if_necessary(
            None, KeyModel(key_id="k", enabled=True), CallbackContext(), use_delay=True
        )

        assert outcome.can_continue
        assert kms.calls == []

    def test_disable_retries_not_found(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that disabling a not-yet-visible key backs off and then succeeds."""
        key = kms.add_key()
        kms.fail("DisableKey", "NotFoundException", times=2)
        model = KeyModel(key_id=key.key_id, enabled=False)
        context = CallbackContext()

        outcomes = [orchestrator.disable_key_if_necessary(None, model, context) for _ in range(4)]

        assert [o.callback_delay_seconds for o in outcomes] == [1.0, pytest.approx(1.3), 0, 0]
        assert kms.call_count("DisableKey") == 3
        assert key.enabled is False
        assert context.retry_attempts == {}

    def test_disable_gives_up_after_budget(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that NotFound surfaces once the 60s backoff budget is spent."""
        key = kms.add_key()
        kms.fail("DisableKey", "NotFoundException", times=100)
        model = KeyModel(key_id=key.key_id, enabled=False)
        context = CallbackContext()

        suspended = []
        with pytest.raises(HandlerError) as exc_info:
            while True:
                outcome = orchestrator.disable_key_if_necessary(None, model, context)
                suspended.append(outcome.callback_delay_seconds)

        assert exc_info.value.code == ErrorCode.NOT_FOUND
        assert len(suspended) == 15
        assert sum(suspended) <= 60
        assert kms.call_count("DisableKey") == 16


class TestUpdateKeyRotation:
    """Tests for update_key_rotation()."""

    def test_enable_rotation(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test turning rotation on with a period."""
        key = kms.add_key()
        model = KeyModel(key_id=key.key_id, enable_key_rotation=True, rotation_period_in_days=180)
        context = CallbackContext()

        orchestrator.update_key_rotation(KeyModel(enable_key_rotation=False), model, context)

        assert key.rotation_enabled is True
        assert key.rotation_period_in_days == 180
        assert context.rotation_updated is True

    def test_period_change_reissues_enable(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that changing the period of an enabled rotation calls enable again."""
        key = kms.add_key(rotation_enabled=True, rotation_period_in_days=365)
        previous = KeyModel(enable_key_rotation=True, rotation_period_in_days=365)
        model = KeyModel(key_id=key.key_id, enable_key_rotation=True, rotation_period_in_days=90)

        orchestrator.update_key_rotation(previous, model, CallbackContext())

        assert kms.calls_to("EnableKeyRotation") == [
            {"KeyId": key.key_id, "RotationPeriodInDays": 90}
        ]

    def test_disable_rotation(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test turning rotation off."""
        key = kms.add_key(rotation_enabled=True, rotation_period_in_days=365)
        model = KeyModel(key_id=key.key_id, enable_key_rotation=False)

        previous = KeyModel(enable_key_rotation=True)

        orchestrator.update_key_rotation(previous, model, CallbackContext())

        assert key.rotation_enabled is False
        assert kms.call_count("EnableKeyRotation") == 0

    def test_unchanged_rotation_makes_no_call(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that nothing is sent when rotation already matches."""
        outcome = orchestrator.update_key_rotation(
            KeyModel(enable_key_rotation=True, rotation_period_in_days=365),
            KeyModel(key_id="k", enable_key_rotation=True, rotation_period_in_days=365),
            CallbackContext(),
        )

        assert outcome.can_continue
        assert kms.calls == []

    def test_rotation_not_repeated_on_replay(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that the rotation flag short-circuits later invocations."""
        key = kms.add_key()
        model = KeyModel(key_id=key.key_id, enable_key_rotation=True)
        context = CallbackContext()

        orchestrator.update_key_rotation(None, model, context)
        orchestrator.update_key_rotation(None, model, context)

        assert kms.call_count("EnableKeyRotation") == 1

    def test_enable_rotation_on_disabled_key(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that KMS refusing rotation for a disabled key is an invalid request."""
        key = kms.add_key(enabled=False, key_state="Disabled")

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.update_key_rotation(
                None, KeyModel(key_id=key.key_id, enable_key_rotation=True), CallbackContext()
            )

        assert exc_info.value.code == ErrorCode.INVALID_REQUEST


class TestUpdateKeyTags:
    """Tests for update_key_tags()."""

    def test_value_change_untags_then_tags(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that a changed value is untagged first and re-tagged after."""
        key = kms.add_key(tags={"env": "dev", "team": "a", "stale": "x"})
        model = KeyModel(key_id=key.key_id)

        outcome = orchestrator.update_key_tags(
            model, {"env": "prod", "team": "a"}, CallbackContext()
        )

        assert outcome.can_continue
        assert kms.operations() == ["ListResourceTags", "UntagResource", "TagResource"]
        assert kms.calls_to("UntagResource")[0]["TagKeys"] == ["env", "stale"]
        assert kms.calls_to("TagResource")[0]["Tags"] == [{"TagKey": "env", "TagValue": "prod"}]
        assert key.tags == {"env": "prod", "team": "a"}

    def test_matching_tags_make_no_mutation(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that only a listing happens when tags already match."""
        key = kms.add_key(tags={"env": "prod"})

        model = KeyModel(key_id=key.key_id)

        orchestrator.update_key_tags(model, {"env": "prod"}, CallbackContext())

        assert kms.mutating_calls() == []

    def test_tag_failure_propagates(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that a tagging error is surfaced, not swallowed."""
        key = kms.add_key()
        kms.fail("TagResource", "TagException", "Too many tags")

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.update_key_tags(
                KeyModel(key_id=key.key_id), {"env": "prod"}, CallbackContext()
            )

        assert exc_info.value.code == ErrorCode.INVALID_REQUEST
        assert str(exc_info.value) == "Too many tags"


class TestCreateKey:
    """Tests for create_key()."""

    def test_creates_once(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that the key is created once and its identifiers recorded."""
        model = KeyModel(description="app key").apply_defaults()
        context = CallbackContext()

        orchestrator.create_key(model, context, {"env": "prod"})
        orchestrator.create_key(model, context, {"env": "prod"})

        assert kms.call_count("CreateKey") == 1
        key = kms.keys[model.key_id]
        assert model.arn == key.arn
        assert key.tags == {"env": "prod"}
        assert model.description == "app key"

    def test_limit_exceeded(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test that a key quota error maps to ServiceLimitExceeded."""
        kms.fail("CreateKey", "LimitExceededException")

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.create_key(KeyModel().apply_defaults(), CallbackContext(), {})

        assert exc_info.value.code == ErrorCode.SERVICE_LIMIT_EXCEEDED


class TestReplicateKey:
    """Tests for replicate_key()."""

    def _setup(self, factory: MockClientFactory) -> tuple[MockKmsClient, KeyOrchestrator, str]:
        primary_kms = factory.get_client("us-east-1")
        primary = primary_kms.add_key("mrk-1", multi_region=True, multi_region_key_type="PRIMARY")
        orchestrator = KeyOrchestrator(ReplicaKeyTranslator(), factory, region="us-west-2")
        return factory.get_client("us-west-2"), orchestrator, primary.arn

    def test_replicates_in_primary_region(self, factory: MockClientFactory) -> None:
        """Test that ReplicateKey goes to the primary's region and then waits."""
        replica_kms, orchestrator, primary_arn = self._setup(factory)
        model = ReplicaKeyModel(primary_key_arn=primary_arn).apply_defaults()
        context = CallbackContext()

        first = orchestrator.replicate_key(model, context, {})
        second = orchestrator.replicate_key(model, context, {})

        assert first.callback_delay_seconds == 60
        assert second.can_continue
        assert factory.get_client("us-east-1").call_count("ReplicateKey") == 1
        assert replica_kms.calls_to("ReplicateKey") == []
        assert model.key_id == "mrk-1"
        assert "us-west-2" in model.arn

    def test_waits_while_creating(self, factory: MockClientFactory) -> None:
        """Test that the replica is polled until it leaves Creating."""
        replica_kms, orchestrator, primary_arn = self._setup(factory)
        replica_kms.replica_creating_describes = 1
        model = ReplicaKeyModel(primary_key_arn=primary_arn).apply_defaults()
        context = CallbackContext()

        outcomes = [orchestrator.replicate_key(model, context, {}) for _ in range(3)]

        assert [o.callback_delay_seconds for o in outcomes] == [60, 5, 0]
        assert replica_kms.keys["mrk-1"].key_state == "Enabled"

    def test_non_multi_region_primary(self, factory: MockClientFactory) -> None:
        """Test that replicating a single-region key is an invalid request."""
        primary = factory.get_client("us-east-1").add_key("single")
        orchestrator = KeyOrchestrator(ReplicaKeyTranslator(), factory, region="us-west-2")
        model = ReplicaKeyModel(primary_key_arn=primary.arn).apply_defaults()

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.replicate_key(model, CallbackContext(), {})

        assert exc_info.value.code == ErrorCode.INVALID_REQUEST

    def test_needs_replicable_translator(self, orchestrator: KeyOrchestrator) -> None:
        """Test that plain key translators cannot replicate."""
        with pytest.raises(TypeError):
            orchestrator.replicate_key(KeyModel(), CallbackContext(), {})


class TestDeleteKey:
    """Tests for delete_key()."""

    def test_delete_flow(self, orchestrator: KeyOrchestrator, kms: MockKmsClient) -> None:
        """Test schedule once, poll until pending deletion, then wait 15s."""
        kms.deletion_lag_describes = 2
        key = kms.add_key()
        model = KeyModel(key_id=key.key_id, pending_window_in_days=7)
        context = CallbackContext()

        outcomes: list[Outcome] = []
        while not outcomes or outcomes[-1].status == OperationStatus.IN_PROGRESS:
            outcomes.append(orchestrator.delete_key(model, context))

        assert [o.callback_delay_seconds for o in outcomes[:-1]] == [5, 5, 15]
        assert outcomes[-1].status == OperationStatus.SUCCESS
        assert outcomes[-1].resource_model is None
        assert kms.calls_to("ScheduleKeyDeletion") == [
            {"KeyId": key.key_id, "PendingWindowInDays": 7}
        ]
        assert context.update_request is False

    def test_already_pending_deletion(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that deleting a key already pending deletion fails with NotFound."""
        key = kms.add_key(key_state="PendingDeletion", enabled=False)

        outcome = orchestrator.delete_key(KeyModel(key_id=key.key_id), CallbackContext())

        assert outcome.status == OperationStatus.FAILED
        assert outcome.error_code == ErrorCode.NOT_FOUND

    def test_missing_key(self, orchestrator: KeyOrchestrator) -> None:
        """Test that deleting an unknown key raises NotFound."""
        with pytest.raises(HandlerError) as exc_info:
            orchestrator.delete_key(KeyModel(key_id="nope"), CallbackContext())

        assert exc_info.value.code == ErrorCode.NOT_FOUND

    def test_other_invalid_requests_propagate(
        self, orchestrator: KeyOrchestrator, kms: MockKmsClient
    ) -> None:
        """Test that only the invalid-state error is remapped."""
        key = kms.add_key()
        kms.fail("ScheduleKeyDeletion", "InvalidArnException", "bad arn")

        with pytest.raises(HandlerError) as exc_info:
            orchestrator.delete_key(KeyModel(key_id=key.key_id), CallbackContext())

        assert exc_info.value.code == ErrorCode.INVALID_REQUEST
