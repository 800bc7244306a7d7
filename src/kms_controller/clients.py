"""Factory for creating and caching regional KMS clients.

Credentials come from the default boto3 chain. Throttling and transport
errors are retried inside botocore (adaptive mode); everything else surfaces
to the error taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

from .config import Config
from .errors import invalid_request

logger = logging.getLogger(__name__)

# Seconds; KMS control-plane calls are small
CONNECT_TIMEOUT_SECONDS = 10
READ_TIMEOUT_SECONDS = 30

ARN_REGION_INDEX = 3
ARN_MIN_PARTS = 6


def region_from_arn(arn: str | None) -> str:
    """Region component of an ARN like arn:aws:kms:us-west-2:111122223333:key/mrk-1.

    Raises:
        HandlerError: InvalidRequest if the ARN is malformed.
    """
    parts = (arn or "").split(":")
    if len(parts) < ARN_MIN_PARTS or parts[0] != "arn" or not parts[ARN_REGION_INDEX]:
        raise invalid_request("ParseArn", f"Not a regional ARN: {arn!r}")
    return parts[ARN_REGION_INDEX]


class KmsClientFactory:
    """Creates boto3 KMS clients, one per region, reused across calls."""

    def __init__(
        self,
        default_region: str = "us-east-1",
        boto_config: BotoConfig | None = None,
        session: boto3.session.Session | None = None,
    ) -> None:
        """Initialize with default region and botocore config.

        Args:
            default_region: Region used when none is requested.
            boto_config: Applied to every client. Defaults to adaptive retries.
            session: boto3 session to build clients from.
        """
        self._default_region = default_region
        self._boto_config = boto_config or BotoConfig(
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=CONNECT_TIMEOUT_SECONDS,
            read_timeout=READ_TIMEOUT_SECONDS,
        )
        self._session = session
        self._clients: dict[str, Any] = {}

    @classmethod
    def from_config(cls, config: Config) -> KmsClientFactory:
        return cls(
            default_region=config.region,
            boto_config=BotoConfig(
                retries={"max_attempts": config.kms_max_attempts, "mode": "adaptive"},
                connect_timeout=CONNECT_TIMEOUT_SECONDS,
                read_timeout=READ_TIMEOUT_SECONDS,
            ),
        )

    @property
    def default_region(self) -> str:
        return self._default_region

    @property
    def cached_regions(self) -> list[str]:
        return list(self._clients)

    def get_client(self, region: str | None = None) -> Any:
        """Get or create the KMS client for a region.

        Args:
            region: AWS region code; the default region if omitted.

        Returns:
            boto3 KMS client. The same instance for repeated calls.
        """
        region = region or self._default_region
        if region in self._clients:
            return self._clients[region]

        logger.info("Creating KMS client", extra={"region": region})
        session = self._session or boto3.session.Session()
        client = session.client("kms", region_name=region, config=self._boto_config)
        self._clients[region] = client
        return client

    def get_client_for_arn(self, arn: str | None) -> Any:
        """KMS client for the region an ARN lives in."""
        return self.get_client(region_from_arn(arn))
