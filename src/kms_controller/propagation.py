"""Propagation-delay policy.

KMS is eventually consistent: a change made by one call may not be visible
to the next call, or to other consumers, for a while. Each logical operation
therefore ends with exactly one real wait before reporting success. Updates
wait longer than creates and deletes.
"""

from __future__ import annotations

import logging

from .config import (
    DEFAULT_PROPAGATION_DELAY_CREATE_SECONDS,
    DEFAULT_PROPAGATION_DELAY_UPDATE_SECONDS,
    Config,
)
from .engine import Outcome
from .errors import ErrorCode, HandlerError
from .models import CallbackContext

logger = logging.getLogger(__name__)

PROPAGATE = "WaitForChangesToPropagate"


def _context(outcome: Outcome) -> CallbackContext:
    if outcome.callback_context is None:
        raise HandlerError(
            ErrorCode.INTERNAL_FAILURE, PROPAGATE, "Outcome carries no callback context"
        )
    return outcome.callback_context


class PropagationDelayPolicy:
    """Suspends once per logical operation so changes can propagate."""

    def __init__(
        self,
        update_delay_seconds: int = DEFAULT_PROPAGATION_DELAY_UPDATE_SECONDS,
        create_delay_seconds: int = DEFAULT_PROPAGATION_DELAY_CREATE_SECONDS,
    ) -> None:
        self.update_delay_seconds = update_delay_seconds
        self.create_delay_seconds = create_delay_seconds

    @classmethod
    def from_config(cls, config: Config) -> PropagationDelayPolicy:
        return cls(
            update_delay_seconds=config.propagation_delay_update_seconds,
            create_delay_seconds=config.propagation_delay_create_seconds,
        )

    def set_request_type(self, outcome: Outcome, is_update: bool) -> Outcome:
        """Record whether the running operation is an update."""
        _context(outcome).update_request = is_update
        return outcome

    def wait_for_changes_to_propagate(self, outcome: Outcome) -> Outcome:
        """Suspend for the propagation delay, unless already waited.

        Args:
            outcome: Continue outcome carrying the model and context.

        Returns:
            The outcome unchanged on replay, otherwise a suspend outcome.
        """
        context = _context(outcome)
        if context.propagation_complete:
            return outcome

        context.propagation_complete = True
        delay = self.update_delay_seconds if context.update_request else self.create_delay_seconds
        logger.info(
            "Waiting for changes to propagate",
            extra={"delay_seconds": delay, "update_request": context.update_request},
        )
        return Outcome.progress(outcome.resource_model, context, delay)
