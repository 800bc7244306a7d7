"""Entry point: one handler invocation, JSON in and JSON out.

The harness (or the kmsctl reference harness) hands over a request document
and gets back an outcome document. Nothing survives between invocations
except what the outcome's callbackContext carries.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from .alias_handlers import HANDLERS as ALIAS_HANDLERS
from .alias_handlers import RESOURCE_TYPE as ALIAS_RESOURCE_TYPE
from .clients import KmsClientFactory
from .config import Config, ConfigurationError
from .handler import BaseHandler
from .key_handlers import HANDLERS as KEY_HANDLERS
from .key_handlers import RESOURCE_TYPE as KEY_RESOURCE_TYPE
from .models import HandlerRequest
from .replica_key_handlers import HANDLERS as REPLICA_KEY_HANDLERS
from .replica_key_handlers import RESOURCE_TYPE as REPLICA_KEY_RESOURCE_TYPE

# Resource type -> action -> handler class
HANDLER_REGISTRY: dict[str, dict[str, type[BaseHandler]]] = {
    KEY_RESOURCE_TYPE: dict(KEY_HANDLERS),
    REPLICA_KEY_RESOURCE_TYPE: dict(REPLICA_KEY_HANDLERS),
    ALIAS_RESOURCE_TYPE: dict(ALIAS_HANDLERS),
}

# Attributes every LogRecord has; anything else came in through extra={...}
_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO, stream: Any = None) -> None:
    """Configure structured logging with JSON output.

    Args:
        level: Root log level.
        stream: Destination; stderr by default so stdout stays free for outcomes.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_handler(
    resource_type: str,
    action: str,
    config: Config | None = None,
    client_factory: KmsClientFactory | None = None,
) -> BaseHandler:
    """Instantiate the handler for a resource type and action.

    Raises:
        KeyError: Unknown resource type or action.
    """
    try:
        handler_class = HANDLER_REGISTRY[resource_type][action.lower()]
    except KeyError as e:
        raise KeyError(f"No handler for {resource_type} {action}") from e
    return handler_class(client_factory=client_factory, config=config)


def parse_request(payload: dict[str, Any]) -> HandlerRequest:
    """Build a HandlerRequest from a harness request document."""
    return HandlerRequest.model_validate(payload)


def invoke(
    resource_type: str,
    action: str,
    payload: dict[str, Any],
    config: Config | None = None,
    client_factory: KmsClientFactory | None = None,
) -> dict[str, Any]:
    """Run one invocation and return the outcome document.

    Args:
        resource_type: "AWS::KMS::Key", "AWS::KMS::ReplicaKey" or "AWS::KMS::Alias".
        action: create, read, update, delete or list.
        payload: Request document (desiredResourceState, callbackContext, ...).
        config: Controller configuration; loaded from the environment if omitted.
        client_factory: KMS client source; built from config if omitted.

    Returns:
        Outcome as a JSON-compatible dict.
    """
    handler = get_handler(resource_type, action, config=config, client_factory=client_factory)
    outcome = handler.handle_request(parse_request(payload))
    return outcome.to_dict()


def main() -> int:
    """Read {"resourceType", "action", "request"} from stdin, write the outcome to stdout.

    Returns:
        Exit code (0 when an outcome was produced, non-zero otherwise).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    try:
        document = json.load(sys.stdin)
        result = invoke(
            document["resourceType"], document["action"], document.get("request", {}), config
        )
    except (ValueError, KeyError) as e:
        logger.error("Invalid invocation document", extra={"error": str(e)})
        return 1

    json.dump(result, sys.stdout)
    sys.stdout.write("\n")
    return 0


def run() -> None:
    """Entry point for the single-invocation runner."""
    sys.exit(main())


if __name__ == "__main__":
    run()
