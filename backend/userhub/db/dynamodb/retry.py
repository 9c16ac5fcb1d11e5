from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    CONDITIONAL_CHECK_FAILED,
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    # Identity writes surface failures immediately; callers opt into more attempts.
    max_attempts: int = 1
    base_delay_s: float = 0.05
    max_delay_s: float = 1.5


_THROTTLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    # Can be returned directly by TransactWriteItems under contention.
    "TransactionConflictException",
}

# code -> (error class, message, retryable)
_CODE_MAP: dict[str, tuple[type[DdbError], str, bool]] = {
    "ConditionalCheckFailedException": (DdbConflict, "DynamoDB conditional check failed", False),
    "ValidationException": (DdbValidation, "DynamoDB request validation failed", False),
    "ParamValidationError": (DdbValidation, "DynamoDB request validation failed", False),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB access denied", False),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB access denied", False),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table not found", False),
}


def _sleep_backoff(policy: RetryPolicy, attempt: int) -> None:
    # Full jitter exponential backoff.
    exp = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    time.sleep(random.random() * exp)


def _response_part(e: ClientError, *path: str) -> Any:
    cur: Any = e.response or {}
    for p in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(p)
    return cur


def _cancellation_codes(e: ClientError) -> list[str]:
    reasons = _response_part(e, "CancellationReasons") or []
    return [str((r or {}).get("Code") or "None") for r in reasons if isinstance(r, dict) or r is None]


def map_client_error(
    exc: ClientError,
    *,
    operation: str,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
) -> DdbError:
    code = str(_response_part(exc, "Error", "Code") or "")
    common: dict[str, Any] = {
        "operation": operation,
        "table_name": table_name,
        "key": key,
        "aws_request_id": _response_part(exc, "ResponseMetadata", "RequestId"),
        "cause": exc,
        "code": code or None,
    }

    if code == "TransactionCanceledException":
        reasons = _cancellation_codes(exc)
        if CONDITIONAL_CHECK_FAILED in reasons:
            return DdbConflict(
                message="DynamoDB transaction condition failed", cancellation_reasons=reasons, **common
            )
        if any(r in _THROTTLE_CODES for r in reasons):
            return DdbThrottled(
                message="DynamoDB transaction conflicted", retryable=True, cancellation_reasons=reasons, **common
            )
        return DdbInternal(message="DynamoDB transaction cancelled", cancellation_reasons=reasons, **common)

    if code in _CODE_MAP:
        cls, message, retryable = _CODE_MAP[code]
        return cls(message=message, retryable=retryable, **common)

    if code in _THROTTLE_CODES:
        return DdbThrottled(message="DynamoDB request throttled or unavailable", retryable=True, **common)

    return DdbInternal(message=f"DynamoDB request failed ({code or 'ClientError'})", **common)


def _map_error(*, operation: str, table_name: str | None, key: dict[str, Any] | None, exc: Exception) -> DdbError:
    if isinstance(exc, DdbError):
        return exc
    if isinstance(exc, ClientError):
        return map_client_error(exc, operation=operation, table_name=table_name, key=key)
    if isinstance(exc, BotoCoreError):
        # Connection/timeout failures below the HTTP layer.
        return DdbUnavailable(
            message="DynamoDB client error",
            operation=operation,
            table_name=table_name,
            key=key,
            retryable=True,
            cause=exc,
        )
    return DdbInternal(message="Unexpected DynamoDB error", operation=operation, table_name=table_name, key=key, cause=exc)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    """Run one DynamoDB call, mapping botocore failures to `DdbError` subclasses."""
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = _map_error(operation=operation, table_name=table_name, key=key, exc=e)

            # Never retry validation/conflict errors.
            if not mapped.retryable or attempt >= attempts:
                if mapped is e:
                    raise
                raise mapped from e

            _sleep_backoff(policy, attempt)

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)
