from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..db.dynamodb.table import DynamoTable, get_main_table
from ..repositories.audit_repo import AuditRepository
from ..repositories.groups_repo import GroupsRepository
from ..repositories.sessions_repo import SessionsRepository
from ..repositories.users_repo import UsersRepository
from .audit_log import AuditLog
from .auth_service import AuthService
from .email_ses import SesEmailSender
from .group_service import GroupService
from .media_storage import LocalMediaStorage
from .passwords import PasswordHasher
from .recovery_service import RecoveryService
from .tokens import TokenSigner
from .user_service import UserService

if TYPE_CHECKING:
    from ..settings import Settings


@dataclass
class Services:
    settings: Settings
    users: UserService
    groups: GroupService
    auth: AuthService
    recovery: RecoveryService
    audit: AuditLog
    storage: LocalMediaStorage


def build_services(settings: Settings, *, table: DynamoTable | None = None) -> Services:
    """Wire repositories and services against one DynamoDB table."""
    table = table or get_main_table(settings)
    users_repo = UsersRepository(table)

    hasher = PasswordHasher(rounds=int(settings.bcrypt_rounds))
    tokens = TokenSigner(secret=settings.signing_secret)
    audit = AuditLog(AuditRepository(table))
    storage = LocalMediaStorage(settings.media_root)

    auth = AuthService(
        settings=settings,
        users=users_repo,
        sessions=SessionsRepository(table),
        tokens=tokens,
        hasher=hasher,
    )
    return Services(
        settings=settings,
        users=UserService(settings=settings, users=users_repo, audit=audit, hasher=hasher, storage=storage),
        groups=GroupService(settings=settings, groups=GroupsRepository(table), users=users_repo, audit=audit),
        auth=auth,
        recovery=RecoveryService(
            settings=settings,
            users=users_repo,
            tokens=tokens,
            hasher=hasher,
            email_sender=SesEmailSender(settings),
            audit=audit,
            auth=auth,
        ),
        audit=audit,
        storage=storage,
    )
