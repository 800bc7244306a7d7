"""Base class for per-operation handlers.

A handler runs one invocation of one logical operation (create, read,
update, delete or list) for one resource variant. Any HandlerError that
escapes the chain becomes a FAILED outcome carrying its error code;
anything else is a bug and propagates to the harness.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from .clients import KmsClientFactory
from .config import Config
from .engine import Outcome
from .errors import HandlerError, invalid_request
from .models import CallbackContext, HandlerRequest
from .orchestrator import KeyOrchestrator
from .translator import ResourceTranslator

logger = logging.getLogger(__name__)

PARSE_RESOURCE_MODEL = "ParseResourceModel"


class BaseHandler:
    """Shared plumbing: context creation, orchestrator wiring, error conversion."""

    # Set by subclasses
    resource_type: str = ""
    action: str = ""

    def __init__(
        self,
        client_factory: KmsClientFactory | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            client_factory: Source of KMS clients. Built from config if omitted.
            config: Controller configuration. Loaded from the environment if omitted.
        """
        self._config = config or Config.from_env()
        self._client_factory = client_factory or KmsClientFactory.from_config(self._config)

    def translator(self) -> ResourceTranslator:
        raise NotImplementedError("Subclasses must implement translator")

    def handle_request(self, request: HandlerRequest) -> Outcome:
        """Run one invocation.

        Args:
            request: Desired/previous state and the context from the last
                invocation (None on the first).

        Returns:
            Terminal outcome, or an IN_PROGRESS outcome to re-invoke with.
        """
        context = request.callback_context or CallbackContext()
        orchestrator = KeyOrchestrator(
            self.translator(),
            self._client_factory,
            self._config,
            region=request.region or self._config.region,
        )
        log_extra = {"resource_type": self.resource_type, "action": self.action}
        logger.info("Handling request", extra=log_extra)

        try:
            outcome = self._handle(request, context, orchestrator)
        except HandlerError as e:
            logger.error(
                "Request failed",
                extra={**log_extra, "error_code": e.code.value, "operation": e.operation},
            )
            return Outcome.failed(e.code, str(e))

        logger.info(
            "Request handled",
            extra={
                **log_extra,
                "status": outcome.status.value,
                "delay_seconds": outcome.callback_delay_seconds,
            },
        )
        return outcome

    def _handle(
        self,
        request: HandlerRequest,
        context: CallbackContext,
        orchestrator: KeyOrchestrator,
    ) -> Outcome:
        raise NotImplementedError("Subclasses must implement _handle")

    def _model(self, state: Any, model_class: type) -> Any:
        """Parse a desired or previous state document into model_class.

        Raises:
            HandlerError: InvalidRequest listing every field that failed validation.
        """
        if state is None or isinstance(state, model_class):
            return state
        try:
            return model_class.model_validate(state)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or model_class.__name__}: {err['msg']}"
                for err in e.errors()
            )
            raise invalid_request(PARSE_RESOURCE_MODEL, problems) from e
