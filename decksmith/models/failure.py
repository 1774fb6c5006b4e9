"""
Failure Explanation Envelope — Unified Response Classification.

This module defines the error taxonomy of the engine and the response
envelope every API failure is rendered into.

Taxonomy (domain exceptions, all subclasses of KnownError):
- NotFoundError: a referenced entity is absent
- ConflictError: a natural-key uniqueness collision
- ValidationFailedError: a composition rule or input shape was violated
- PartialFailureError: a bulk operation referenced unknown ids
- ExternalServiceUnavailableError: the generative collaborator failed
- InconsistentStateError: a projection observed impossible data

INVARIANT: Unexpected exceptions never leak internal detail to the caller.
All user-visible failures pass through `finalize_response()`.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"
    VALIDATION_FAILED = "validation_failed"

    # Resource failures
    NOT_FOUND = "not_found"
    PARTIAL_FAILURE = "partial_failure"
    CONFLICT = "conflict"

    # Service failures
    SERVICE_UNAVAILABLE = "service_unavailable"
    BUDGET_EXCEEDED = "budget_exceeded"

    # Internal errors
    INCONSISTENT_STATE = "inconsistent_state"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    context: dict[str, Any] | None = Field(
        default=None,
        description="Structured data the caller can use to correct the request",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel, Generic[T]):
    """
    Response envelope used for failures.

    Successful endpoints return their typed response model directly;
    every failure is rendered as an ApiResponse with `failure` set.
    """

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: T | None = Field(
        default=None,
        description="Response data (present on success)",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )


# =============================================================================
# KNOWN ERRORS
# =============================================================================


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        self.context = context
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to a finalized ApiResponse."""
        response: ApiResponse[Any] = ApiResponse(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=self.kind,
                message=self.message,
                detail=self.detail,
                context=self.context,
                suggestion=self.suggestion,
            ),
        )
        return finalize_response(response)


class NotFoundError(KnownError):
    """A referenced entity does not exist (or is not visible to the caller)."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{entity} not found",
            detail=f"{entity} {entity_id} does not exist",
            status_code=404,
            context={"entity": entity, "id": entity_id},
        )


class ConflictError(KnownError):
    """A write collided with an existing natural key."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            kind=FailureKind.CONFLICT,
            message="The request conflicts with existing data.",
            detail=reason,
            suggestion="Resolve the conflicting record and retry.",
            status_code=409,
            context={"reason": reason},
        )


class ValidationFailedError(KnownError):
    """
    A composition rule or input shape was violated.

    Nothing was committed. `rule` names the failed check; `limit` and
    `attempted` carry enough detail for the caller to correct the input.
    """

    def __init__(
        self,
        rule: str,
        detail: str,
        limit: Any = None,
        attempted: Any = None,
        errors: list[dict[str, Any]] | None = None,
    ):
        self.rule = rule
        self.limit = limit
        self.attempted = attempted
        self.errors = errors or []
        context: dict[str, Any] = {"rule": rule, "limit": limit, "attempted": attempted}
        if self.errors:
            context["errors"] = self.errors
        super().__init__(
            kind=FailureKind.VALIDATION_FAILED,
            message=f"Validation failed: {rule}",
            detail=detail,
            suggestion="Adjust the request so it satisfies the rule.",
            status_code=422,
            context=context,
        )


class PartialFailureError(KnownError):
    """
    A bulk operation referenced ids that do not resolve.

    The whole operation is rejected; nothing was committed.
    """

    def __init__(self, succeeded_ids: list[str], failed_ids: list[str]):
        self.succeeded_ids = succeeded_ids
        self.failed_ids = failed_ids
        super().__init__(
            kind=FailureKind.PARTIAL_FAILURE,
            message="Some referenced entries do not exist. Nothing was changed.",
            detail=f"{len(failed_ids)} of {len(succeeded_ids) + len(failed_ids)} ids not found",
            suggestion="Remove the missing ids and retry.",
            status_code=404,
            context={"succeededIds": succeeded_ids, "failedIds": failed_ids},
        )


class ExternalServiceUnavailableError(KnownError):
    """
    The generative-text collaborator timed out or failed.

    Recovered locally by degrading to rule-only output; never surfaced
    as a request failure.
    """

    def __init__(self, service: str, detail: str | None = None):
        self.service = service
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message=f"{service} is unavailable",
            detail=detail,
            status_code=503,
            context={"service": service},
        )


class InconsistentStateError(KnownError):
    """
    A projection observed data that correct sequencing cannot produce.

    This is a data-integrity defect. It is logged in full and reported
    to the caller without internal detail.
    """

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.INCONSISTENT_STATE,
            message="The system detected inconsistent data.",
            detail=detail,
            suggestion="If this persists, please report the issue.",
            status_code=500,
        )

    def to_response(self) -> ApiResponse[Any]:
        """Render without the internal detail."""
        response: ApiResponse[Any] = ApiResponse(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=self.kind,
                message=self.message,
                suggestion=self.suggestion,
            ),
        )
        return finalize_response(response)


# =============================================================================
# FAILURE AUTHORITY BOUNDARY
# =============================================================================


# Standard messages for failures that carry no message of their own
STANDARD_MESSAGES: dict[OutcomeType, str] = {
    OutcomeType.KNOWN_FAILURE: "The operation failed due to a known issue.",
    OutcomeType.UNKNOWN_FAILURE: "An unexpected error occurred.",
}

STANDARD_SUGGESTIONS: dict[OutcomeType, str] = {
    OutcomeType.KNOWN_FAILURE: "Check the error details and adjust your request.",
    OutcomeType.UNKNOWN_FAILURE: "If this persists, please report the issue.",
}


# Track finalized responses
_finalized_responses: set[int] = set()


def finalize_response(response: ApiResponse[Any]) -> ApiResponse[Any]:
    """
    Finalize a response through the authority boundary.

    Raises:
        ValueError: If response structure is invalid
    """
    if response.outcome == OutcomeType.SUCCESS:
        if response.failure is not None:
            raise ValueError("Success response must not have failure details")
    else:
        if response.failure is None:
            raise ValueError(f"{response.outcome.value} response must have failure details")

    _finalized_responses.add(id(response))

    return response


def is_finalized(response: ApiResponse[Any]) -> bool:
    """Check if a response has passed through the authority boundary."""
    return id(response) in _finalized_responses


def create_unknown_failure() -> ApiResponse[Any]:
    """
    Create an unknown failure response.

    The message is fixed and carries no detail about the exception;
    the caller is expected to have logged the exception already.
    """
    response: ApiResponse[Any] = ApiResponse(
        outcome=OutcomeType.UNKNOWN_FAILURE,
        failure=FailureDetail(
            kind=FailureKind.UNKNOWN,
            message=STANDARD_MESSAGES[OutcomeType.UNKNOWN_FAILURE],
            suggestion=STANDARD_SUGGESTIONS[OutcomeType.UNKNOWN_FAILURE],
        ),
    )

    return finalize_response(response)


def create_validation_failure(errors: list[dict[str, Any]]) -> ApiResponse[Any]:
    """
    Create a failure response for malformed request input.

    Args:
        errors: Field-level errors, each with `field`, `message` and `type`
    """
    return ValidationFailedError(
        rule="request-shape",
        detail=f"{len(errors)} invalid field(s)",
        errors=errors,
    ).to_response()
