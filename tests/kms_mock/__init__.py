"""KMS API mock for handler and orchestrator tests.

Provides an in-memory, per-region implementation of the KMS operations the
controller uses, so whole logical operations can be replayed invocation by
invocation without AWS connectivity.

Key Features:
- Per-region key and alias state, with ReplicateKey writing into the replica region
- Real botocore ClientErrors, including error injection via fail()
- Paginated ListKeys / ListAliases / ListResourceTags
- Delayed state transitions (Creating, PendingDeletion) for stabilization
- Call recording for asserting on exactly which operations were issued

Usage:
    from kms_mock import MockClientFactory

    factory = MockClientFactory()
    kms = factory.get_client()
    key = kms.add_key(description="test")

    orchestrator = KeyOrchestrator(KeyTranslator(), factory, config)
    ...
    assert kms.call_count("ScheduleKeyDeletion") == 1
"""

from .client import (
    DEFAULT_ACCOUNT,
    DEFAULT_POLICY,
    MockClientFactory,
    MockKey,
    MockKmsClient,
    client_error,
)
from .harness import delays, drive

__all__ = [
    "DEFAULT_ACCOUNT",
    "DEFAULT_POLICY",
    "MockClientFactory",
    "MockKey",
    "MockKmsClient",
    "client_error",
    "delays",
    "drive",
]
