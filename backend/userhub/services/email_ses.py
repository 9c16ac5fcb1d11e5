from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import DeliveryError
from ..observability.logging import get_logger

if TYPE_CHECKING:
    from ..settings import Settings


def _sesv2_client(region: str):
    return boto3.client("sesv2", region_name=region)


def recovery_email_text(*, link: str, user: dict[str, Any]) -> str:
    name = str(user.get("name") or user.get("username") or "").strip()
    greeting = f"Hello {name}," if name else "Hello,"
    return "\n".join(
        [
            greeting,
            "",
            "We received a request to reset the password of your account.",
            "Open the following link to choose a new password:",
            "",
            link,
            "",
            "If you did not request this, you can ignore this email.",
        ]
    )


class SesEmailSender:
    def __init__(self, settings: Settings, *, client: Any | None = None):
        self._from = str(settings.email_from or "").strip()
        self._client = client
        self._region = settings.aws_region
        self._log = get_logger("email")

    def _ses(self):
        if self._client is None:
            self._client = _sesv2_client(self._region)
        return self._client

    def send_text_email(self, *, to_email: str, subject: str, text: str) -> dict[str, Any]:
        to_ = str(to_email or "").strip()
        if not to_ or not self._from:
            raise DeliveryError(message="email.notConfigured")
        try:
            resp = self._ses().send_email(
                FromEmailAddress=self._from,
                Destination={"ToAddresses": [to_]},
                Content={
                    "Simple": {
                        "Subject": {"Data": str(subject or "").strip()[:200]},
                        "Body": {"Text": {"Data": str(text or "").strip() or "(empty)"}},
                    }
                },
            )
        except (ClientError, BotoCoreError) as e:
            self._log.error(
                "email_send_failed",
                email_domain=to_.split("@", 1)[1] if "@" in to_ else None,
                error=str(e),
            )
            raise DeliveryError(message="common.operation.fail", cause=e) from e
        msg_id = (resp or {}).get("MessageId") if isinstance(resp, dict) else None
        return {"ok": True, "messageId": msg_id}

    def send_recovery_email(self, address: str, link: str, user: dict[str, Any]) -> bool:
        out = self.send_text_email(
            to_email=address,
            subject="Password recovery",
            text=recovery_email_text(link=link, user=user),
        )
        return bool(out.get("ok"))
