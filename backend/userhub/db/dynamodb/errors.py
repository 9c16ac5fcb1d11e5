from __future__ import annotations

from dataclasses import dataclass
from typing import Any

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailed"


@dataclass(slots=True)
class DdbError(Exception):
    """Storage-layer failure of a single DynamoDB call.

    Repositories let these through; services translate them into the domain
    errors in `userhub.errors`.
    """

    message: str
    operation: str | None = None
    table_name: str | None = None
    key: dict[str, Any] | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None
    # AWS error code, e.g. "ConditionalCheckFailedException".
    code: str | None = None
    # TransactWriteItems: one code per action, in request order ("None" = passed).
    cancellation_reasons: list[str] | None = None

    def __str__(self) -> str:
        return self.message

    def failed_actions(self) -> list[int]:
        """Positions of the transaction actions whose condition failed."""
        return [i for i, c in enumerate(self.cancellation_reasons or []) if c == CONDITIONAL_CHECK_FAILED]


@dataclass(slots=True)
class DdbNotFound(DdbError):
    """The addressed item does not exist."""


@dataclass(slots=True)
class DdbConflict(DdbError):
    """A condition expression failed (uniqueness, optimistic check, already deleted)."""


@dataclass(slots=True)
class DdbValidation(DdbError):
    pass


@dataclass(slots=True)
class DdbThrottled(DdbError):
    pass


@dataclass(slots=True)
class DdbUnavailable(DdbError):
    pass


@dataclass(slots=True)
class DdbInternal(DdbError):
    pass
