from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from fakes import make_settings
from userhub.errors import DeliveryError
from userhub.observability.logging import _redact_secrets
from userhub.services.container import build_services
from userhub.services.email_ses import SesEmailSender, recovery_email_text


class FakeSes:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def send_email(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise ClientError({"Error": {"Code": "MessageRejected", "Message": "no"}}, "SendEmail")
        return {"MessageId": "m-1"}


def test_production_requires_secrets():
    s = make_settings(APP_ENV="prod", JWT_SECRET=None, EMAIL_FROM=None)
    with pytest.raises(RuntimeError) as ei:
        s.require_in_production()
    msg = str(ei.value)
    assert "JWT_SECRET" in msg and "DDB_TABLE_NAME" in msg and "EMAIL_FROM" in msg


def test_non_production_tolerates_partial_config():
    make_settings(JWT_SECRET=None).require_in_production()


@pytest.mark.parametrize("env", ["staging", "development", "test", "qa"])
def test_missing_jwt_secret_never_signs(env):
    s = make_settings(APP_ENV=env, JWT_SECRET=None)
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        s.signing_secret


def test_services_refuse_to_start_without_jwt_secret():
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        build_services(make_settings(JWT_SECRET=""), table=object())


def test_log_safe_dict_hides_secret():
    s = make_settings(JWT_SECRET="super-secret-value")
    dumped = str(s.to_log_safe_dict())
    assert "super-secret-value" not in dumped
    assert s.to_log_safe_dict()["auth"]["jwt_secret_configured"] is True


def test_defaults():
    s = make_settings()
    assert s.ddb_max_attempts == 1
    assert s.recovery_token_ttl_seconds == 86400
    assert s.recovery_reveal_unknown_email is False
    assert s.avatar_extensions == {".png", ".jpg", ".jpeg", ".gif", ".webp"}
    assert make_settings(AVATAR_ALLOWED_EXTENSIONS="PNG, .Jpg").avatar_extensions == {".png", ".jpg"}


def test_recovery_email_is_sent_with_link():
    ses = FakeSes()
    sender = SesEmailSender(make_settings(), client=ses)
    assert sender.send_recovery_email("ann@example.com", "https://web/recovery/t", {"name": "Ann"}) is True

    call = ses.calls[0]
    assert call["FromEmailAddress"] == "noreply@example.test"
    assert call["Destination"] == {"ToAddresses": ["ann@example.com"]}
    body = call["Content"]["Simple"]["Body"]["Text"]["Data"]
    assert "Hello Ann," in body
    assert "https://web/recovery/t" in body


def test_email_errors_become_delivery_errors():
    with pytest.raises(DeliveryError):
        SesEmailSender(make_settings(), client=FakeSes(fail=True)).send_recovery_email("a@example.com", "l", {})
    with pytest.raises(DeliveryError) as ei:
        SesEmailSender(make_settings(EMAIL_FROM=None), client=FakeSes()).send_recovery_email("a@example.com", "l", {})
    assert ei.value.message == "email.notConfigured"


def test_recovery_email_text_without_name():
    assert recovery_email_text(link="L", user={}).startswith("Hello,\n")


def test_log_processor_redacts_credentials():
    out = _redact_secrets(None, "info", {"event": "x", "password": "p", "token": "t", "user_id": "u1"})
    assert out == {"event": "x", "password": "***", "token": "***", "user_id": "u1"}
