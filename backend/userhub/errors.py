"""Domain errors for the account lifecycle services.

Reads report "not found" as ``None``; writes raise. Everything here is
rendered into a problem-details response by the handlers in ``main.py``.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from .db.dynamodb.errors import DdbError
from .observability.logging import get_logger


@dataclass(slots=True)
class IdentityError(Exception):
    message: str
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class UserInputError(IdentityError):
    """Field-level validation failure.

    `input_errors` maps a field name to ``{"message": ..., "type": ...}``.
    """

    input_errors: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def for_field(cls, name: str, message: str, *, type: str = "validation") -> UserInputError:
        return cls(message=message, input_errors={name: {"message": message, "type": type}})

    def to_problem_errors(self) -> list[dict[str, Any]]:
        return [
            {"path": k, "message": str(v.get("message") or self.message), "type": v.get("type")}
            for k, v in sorted(self.input_errors.items())
        ]


@dataclass(slots=True)
class WrongCredential(UserInputError):
    pass


@dataclass(slots=True)
class UserNotFound(IdentityError):
    pass


@dataclass(slots=True)
class AuthenticationFailed(IdentityError):
    pass


@dataclass(slots=True)
class TokenInvalid(IdentityError):
    pass


@dataclass(slots=True)
class TokenExpired(TokenInvalid):
    pass


@dataclass(slots=True)
class PersistenceError(IdentityError):
    pass


@dataclass(slots=True)
class DeliveryError(IdentityError):
    pass


@dataclass(slots=True)
class StorageError(IdentityError):
    pass


@contextmanager
def persistence_errors(operation: str, **context: Any) -> Iterator[None]:
    """Log storage failures and re-raise them as an opaque `PersistenceError`."""
    try:
        yield
    except DdbError as e:
        get_logger("persistence").error(
            "persistence_failed",
            operation=operation,
            ddb_operation=e.operation,
            error=str(e),
            retryable=bool(e.retryable),
            **context,
        )
        raise PersistenceError(message="common.operation.fail", cause=e) from e
