from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbError
from ..errors import persistence_errors
from ..observability.logging import get_logger
from ..repositories.audit_repo import AuditRepository


class AuditLog:
    """
    Best-effort audit sink.

    `record` never raises: a lost audit entry is logged, the user-facing
    operation that triggered it has already succeeded.
    """

    def __init__(self, repo: AuditRepository):
        self._repo = repo
        self._log = get_logger("audit")

    def record(self, actor: str | None, subject: str, action: str) -> None:
        try:
            self._repo.put(actor=actor, subject=str(subject), action=str(action))
        except DdbError as e:
            self._log.warning(
                "audit_record_failed",
                actor=actor,
                subject=str(subject),
                action=str(action),
                error=str(e),
            )
            return
        self._log.info("audit_recorded", actor=actor, subject=str(subject), action=str(action))

    def list_for_subject(self, subject: str, *, limit: int = 50) -> list[dict[str, Any]]:
        with persistence_errors("list_audit", subject=subject):
            return self._repo.list_for_subject(subject, limit=limit)
