"""Error taxonomy for KMS control-plane calls.

Every failure coming back from the KMS API is translated into a single
HandlerError carrying one ErrorCode. The invoking harness only ever sees the
code, and uses it to decide whether a failed operation is terminal or worth
an outer retry.

MAPPING:
- AlreadyExists:        AlreadyExistsException
- InvalidRequest:       invalid alias name, invalid key state, invalid ARN,
                        malformed policy, tag errors, unsupported operation,
                        disabled key, generic ValidationException
- ServiceLimitExceeded: LimitExceededException
- InternalFailure:      InvalidMarkerException (we built the marker ourselves,
                        so seeing this means a bug on our side)
- ServiceInternalError: KMSInternalException, DependencyTimeoutException
- NotFound:             NotFoundException
- AccessDenied:         AccessDeniedException
- Throttling:           ThrottlingException
- GeneralServiceError:  everything else

The table is exhaustive over every operation the orchestrator calls; an
unknown error code falls through to GeneralServiceError, never raises.
"""

from __future__ import annotations

from enum import Enum

from botocore.exceptions import BotoCoreError, ClientError


class ErrorCode(str, Enum):
    """Handler error codes reported back to the harness."""

    ALREADY_EXISTS = "AlreadyExists"
    INVALID_REQUEST = "InvalidRequest"
    SERVICE_LIMIT_EXCEEDED = "ServiceLimitExceeded"
    INTERNAL_FAILURE = "InternalFailure"
    SERVICE_INTERNAL_ERROR = "ServiceInternalError"
    NOT_FOUND = "NotFound"
    ACCESS_DENIED = "AccessDenied"
    THROTTLING = "Throttling"
    GENERAL_SERVICE_ERROR = "GeneralServiceException"
    NOT_STABILIZED = "NotStabilized"


# KMS service error codes, as reported in ClientError.response["Error"]["Code"]
ALREADY_EXISTS_EXCEPTION = "AlreadyExistsException"
INVALID_ALIAS_NAME_EXCEPTION = "InvalidAliasNameException"
INVALID_STATE_EXCEPTION = "KMSInvalidStateException"
INVALID_ARN_EXCEPTION = "InvalidArnException"
MALFORMED_POLICY_EXCEPTION = "MalformedPolicyDocumentException"
TAG_EXCEPTION = "TagException"
UNSUPPORTED_OPERATION_EXCEPTION = "UnsupportedOperationException"
DISABLED_EXCEPTION = "DisabledException"
VALIDATION_ERROR_CODE = "ValidationException"
LIMIT_EXCEEDED_EXCEPTION = "LimitExceededException"
INVALID_MARKER_EXCEPTION = "InvalidMarkerException"
KMS_INTERNAL_EXCEPTION = "KMSInternalException"
DEPENDENCY_TIMEOUT_EXCEPTION = "DependencyTimeoutException"
NOT_FOUND_EXCEPTION = "NotFoundException"
ACCESS_DENIED_ERROR_CODE = "AccessDeniedException"
THROTTLING_ERROR_CODE = "ThrottlingException"

ERROR_CODE_MAPPING: dict[str, ErrorCode] = {
    ALREADY_EXISTS_EXCEPTION: ErrorCode.ALREADY_EXISTS,
    INVALID_ALIAS_NAME_EXCEPTION: ErrorCode.INVALID_REQUEST,
    INVALID_STATE_EXCEPTION: ErrorCode.INVALID_REQUEST,
    INVALID_ARN_EXCEPTION: ErrorCode.INVALID_REQUEST,
    MALFORMED_POLICY_EXCEPTION: ErrorCode.INVALID_REQUEST,
    TAG_EXCEPTION: ErrorCode.INVALID_REQUEST,
    UNSUPPORTED_OPERATION_EXCEPTION: ErrorCode.INVALID_REQUEST,
    DISABLED_EXCEPTION: ErrorCode.INVALID_REQUEST,
    VALIDATION_ERROR_CODE: ErrorCode.INVALID_REQUEST,
    LIMIT_EXCEEDED_EXCEPTION: ErrorCode.SERVICE_LIMIT_EXCEEDED,
    INVALID_MARKER_EXCEPTION: ErrorCode.INTERNAL_FAILURE,
    KMS_INTERNAL_EXCEPTION: ErrorCode.SERVICE_INTERNAL_ERROR,
    DEPENDENCY_TIMEOUT_EXCEPTION: ErrorCode.SERVICE_INTERNAL_ERROR,
    NOT_FOUND_EXCEPTION: ErrorCode.NOT_FOUND,
    ACCESS_DENIED_ERROR_CODE: ErrorCode.ACCESS_DENIED,
    THROTTLING_ERROR_CODE: ErrorCode.THROTTLING,
}


class HandlerError(Exception):
    """A failure classified into the handler error taxonomy.

    Attributes:
        code: Taxonomy classification.
        operation: Name of the KMS operation (or local step) that failed.
        cause: The original exception, if any.
    """

    def __init__(
        self,
        code: ErrorCode,
        operation: str,
        message: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.code = code
        self.operation = operation
        self.cause = cause
        super().__init__(message or f"{operation} failed due to {code.value}")

    @property
    def cause_code(self) -> str | None:
        """KMS error code of the wrapped ClientError, if the cause was one."""
        if isinstance(self.cause, ClientError):
            return self.cause.response.get("Error", {}).get("Code")
        return None

    def __repr__(self) -> str:
        return f"HandlerError(code={self.code.value!r}, operation={self.operation!r})"


def _client_error_details(error: ClientError) -> tuple[str, str]:
    details = error.response.get("Error", {})
    return details.get("Code", ""), details.get("Message", "") or ""


def translate_client_error(operation: str, error: BaseException) -> HandlerError:
    """Classify a botocore failure into the handler error taxonomy.

    Some KMS errors (MalformedPolicyDocumentException for one) come back
    without a message. Users only see the message of a failed operation, not
    its type, so a message naming the operation and error code is filled in.

    Args:
        operation: KMS operation name, e.g. "ScheduleKeyDeletion".
        error: ClientError or BotoCoreError raised by the boto3 client.

    Returns:
        HandlerError wrapping the original error.
    """
    if isinstance(error, ClientError):
        error_code, message = _client_error_details(error)
        code = ERROR_CODE_MAPPING.get(error_code, ErrorCode.GENERAL_SERVICE_ERROR)
        if not message:
            message = f"{operation} failed due to {error_code or code.value}"
        return HandlerError(code, operation, message, cause=error)

    if isinstance(error, BotoCoreError):
        return HandlerError(
            ErrorCode.GENERAL_SERVICE_ERROR,
            operation,
            f"{operation} failed: {error}",
            cause=error,
        )

    return HandlerError(ErrorCode.GENERAL_SERVICE_ERROR, operation, str(error), cause=error)


def not_found(operation: str, identifier: str | None) -> HandlerError:
    """Build a NotFound error for a key that is gone or pending deletion."""
    return HandlerError(
        ErrorCode.NOT_FOUND,
        operation,
        f"Key '{identifier}' was not found or is pending deletion",
    )


def invalid_request(operation: str, message: str) -> HandlerError:
    """Build an InvalidRequest error for a locally rejected request."""
    return HandlerError(ErrorCode.INVALID_REQUEST, operation, message)
