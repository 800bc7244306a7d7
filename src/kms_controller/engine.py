"""Reconciliation step engine.

A logical operation (create, update, delete...) is a chain of named steps.
Each invocation walks the chain from the top; steps whose work is already
recorded in the callback context are skipped, so replaying the chain after a
suspension is safe.

OUTCOMES:
- continue: IN_PROGRESS with zero delay, the chain proceeds to the next step
- suspend:  IN_PROGRESS with a delay, the harness re-invokes later with the
            returned context
- success / failed: terminal, the harness discards the context

The engine never sleeps. Every wait, whether for stabilization polling,
backoff or propagation, is a suspend outcome handed back to the harness.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .backoff import CappedExponentialBackoff, RetryFilter
from .config import Config
from .errors import ErrorCode, HandlerError
from .models import CallbackContext

logger = logging.getLogger(__name__)


class OperationStatus(str, Enum):
    """Status reported to the harness."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class Outcome:
    """Result of one invocation, or of one step within it."""

    status: OperationStatus
    resource_model: Any = None
    resource_models: list[Any] | None = None
    callback_context: CallbackContext | None = None
    callback_delay_seconds: float = 0
    next_token: str | None = None
    error_code: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def progress(cls, model: Any, context: CallbackContext, delay_seconds: float = 0) -> Outcome:
        """Continue (no delay) or suspend (with delay)."""
        return cls(
            status=OperationStatus.IN_PROGRESS,
            resource_model=model,
            callback_context=context,
            callback_delay_seconds=delay_seconds,
        )

    @classmethod
    def success(cls, model: Any = None) -> Outcome:
        return cls(status=OperationStatus.SUCCESS, resource_model=model)

    @classmethod
    def listed(cls, models: list[Any], next_token: str | None) -> Outcome:
        return cls(status=OperationStatus.SUCCESS, resource_models=models, next_token=next_token)

    @classmethod
    def failed(cls, error_code: ErrorCode, message: str) -> Outcome:
        return cls(status=OperationStatus.FAILED, error_code=error_code, message=message)

    @property
    def can_continue(self) -> bool:
        """True for a zero-delay IN_PROGRESS outcome."""
        return self.status == OperationStatus.IN_PROGRESS and not self.callback_delay_seconds

    @property
    def is_terminal(self) -> bool:
        return self.status != OperationStatus.IN_PROGRESS

    def then(self, fn: Callable[[Outcome], Outcome]) -> Outcome:
        """Run the next step if this outcome continues, else short-circuit."""
        if not self.can_continue:
            return self
        return fn(self)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form returned to the harness."""
        result: dict[str, Any] = {"status": self.status.value}
        if self.resource_model is not None:
            result["resourceModel"] = self.resource_model.to_payload()
        if self.resource_models is not None:
            result["resourceModels"] = [m.to_payload() for m in self.resource_models]
        if self.callback_context is not None and not self.is_terminal:
            result["callbackContext"] = self.callback_context.to_dict()
        if self.callback_delay_seconds:
            result["callbackDelaySeconds"] = self.callback_delay_seconds
        if self.next_token is not None:
            result["nextToken"] = self.next_token
        if self.error_code is not None:
            result["errorCode"] = self.error_code.value
        if self.message is not None:
            result["message"] = self.message
        return result


@dataclass(frozen=True)
class Step:
    """One remote call and what to do around it.

    Attributes:
        name: Unique within the logical operation; keys the context bookkeeping.
        build_request: Builds the KMS request from the model.
        invoke: Issues the KMS call.
        apply_response: Folds the response into model/context. Only runs on the
            invocation that issued the call. Returns the outcome to continue
            with; a suspend here ends the invocation.
        stabilize: Predicate polled after the call until it holds.
        retry_filter: Errors matching it are retried with backoff.
        backoff: Overrides the engine's default backoff policy.
        poll_interval_seconds: Overrides the engine's stabilization poll interval.
        once: Issue the call at most once per logical operation.
    """

    name: str
    build_request: Callable[[Any], dict[str, Any]]
    invoke: Callable[[dict[str, Any]], dict[str, Any]]
    apply_response: Callable[[dict[str, Any], Any, CallbackContext], Outcome] | None = None
    stabilize: Callable[[Any, CallbackContext], bool] | None = None
    retry_filter: RetryFilter | None = None
    backoff: CappedExponentialBackoff | None = None
    poll_interval_seconds: float | None = None
    once: bool = False

    @property
    def records_call(self) -> bool:
        return self.once or self.stabilize is not None


class StepEngine:
    """Runs steps against a model and callback context."""

    def __init__(self, config: Config | None = None) -> None:
        config = config or Config()
        self._backoff = CappedExponentialBackoff.from_config(config)
        self._poll_interval_seconds = config.stabilization_poll_seconds
        self._max_stabilization_attempts = config.stabilization_max_attempts

    def run(self, step: Step, model: Any, context: CallbackContext) -> Outcome:
        """Run one step.

        Args:
            step: The step to run.
            model: Resource model, mutated by apply_response.
            context: Callback context, mutated with step bookkeeping.

        Returns:
            A continue outcome, or a suspend outcome (backoff, stabilization
            polling, or whatever apply_response asked for).

        Raises:
            HandlerError: The call failed with a non-retryable error, the retry
                budget is spent, or stabilization never converged.
        """
        outcome = Outcome.progress(model, context)

        if step.records_call and step.name in context.completed_calls:
            logger.debug("Skipping already issued call", extra={"step": step.name})
        else:
            try:
                response = step.invoke(step.build_request(model))
            except HandlerError as error:
                if step.retry_filter is not None and step.retry_filter(error):
                    return self._retry(step, model, context, error)
                logger.warning(
                    "Step failed",
                    extra={"step": step.name, "error_code": error.code.value},
                )
                raise

            context.retry_attempts.pop(step.name, None)
            context.retry_elapsed_seconds.pop(step.name, None)
            if step.records_call:
                context.completed_calls.append(step.name)
            logger.info("Step call succeeded", extra={"step": step.name})

            if step.apply_response is not None:
                outcome = step.apply_response(response, model, context)
                if not outcome.can_continue:
                    return outcome

        if step.stabilize is not None:
            return self._stabilize(step, step.stabilize, model, context, outcome)
        return outcome

    def _retry(
        self,
        step: Step,
        model: Any,
        context: CallbackContext,
        error: HandlerError,
    ) -> Outcome:
        backoff = step.backoff or self._backoff
        attempt = context.retry_attempts.get(step.name, 0)
        elapsed = context.retry_elapsed_seconds.get(step.name, 0.0)

        delay = backoff.next_delay(attempt, elapsed)
        if delay is None:
            logger.warning(
                "Retry budget exhausted",
                extra={"step": step.name, "attempts": attempt, "elapsed_seconds": elapsed},
            )
            raise error

        context.retry_attempts[step.name] = attempt + 1
        context.retry_elapsed_seconds[step.name] = elapsed + delay
        logger.info(
            "Retrying step after backoff",
            extra={
                "step": step.name,
                "attempt": attempt + 1,
                "delay_seconds": delay,
                "error_code": error.code.value,
            },
        )
        return Outcome.progress(model, context, delay)

    def _stabilize(
        self,
        step: Step,
        stabilize: Callable[[Any, CallbackContext], bool],
        model: Any,
        context: CallbackContext,
        outcome: Outcome,
    ) -> Outcome:
        if context.stabilization_retries_remaining is None:
            context.stabilization_retries_remaining = self._max_stabilization_attempts

        if stabilize(model, context):
            # Counter is per stabilization, the next stabilizing step starts fresh
            context.stabilization_retries_remaining = None
            logger.info("Step stabilized", extra={"step": step.name})
            return outcome

        if context.stabilization_retries_remaining <= 0:
            logger.error("Step did not stabilize", extra={"step": step.name})
            raise HandlerError(
                ErrorCode.NOT_STABILIZED,
                step.name,
                f"Resource did not stabilize after {self._max_stabilization_attempts} polls",
            )

        context.stabilization_retries_remaining -= 1
        delay = step.poll_interval_seconds or self._poll_interval_seconds
        logger.info(
            "Waiting for step to stabilize",
            extra={
                "step": step.name,
                "delay_seconds": delay,
                "retries_remaining": context.stabilization_retries_remaining,
            },
        )
        return Outcome.progress(model, context, delay)
