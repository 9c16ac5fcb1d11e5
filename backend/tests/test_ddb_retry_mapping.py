from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from userhub.db.dynamodb.errors import DdbConflict, DdbThrottled, DdbValidation
from userhub.db.dynamodb.pagination import decode_next_token, encode_next_token
from userhub.db.dynamodb.retry import RetryPolicy, ddb_call


def _client_error(code: str, **extra) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}, **extra}, "TransactWriteItems")


def test_default_policy_makes_a_single_attempt():
    calls = []

    def fn():
        calls.append(1)
        raise _client_error("ThrottlingException")

    with pytest.raises(DdbThrottled) as ei:
        ddb_call("PutItem", fn)
    assert len(calls) == 1
    assert ei.value.retryable is True


def test_opt_in_retries_then_succeeds(monkeypatch):
    monkeypatch.setattr("userhub.db.dynamodb.retry._sleep_backoff", lambda policy, attempt: None)
    calls = []

    def fn():
        calls.append(1)
        if len(calls) < 3:
            raise _client_error("ProvisionedThroughputExceededException")
        return "ok"

    assert ddb_call("PutItem", fn, retry_policy=RetryPolicy(max_attempts=3)) == "ok"
    assert len(calls) == 3


def test_conditional_failure_is_conflict_and_not_retried(monkeypatch):
    monkeypatch.setattr("userhub.db.dynamodb.retry._sleep_backoff", lambda policy, attempt: None)
    calls = []

    def fn():
        calls.append(1)
        raise _client_error("ConditionalCheckFailedException")

    with pytest.raises(DdbConflict):
        ddb_call("UpdateItem", fn, retry_policy=RetryPolicy(max_attempts=5))
    assert len(calls) == 1


def test_transaction_cancellation_keeps_reasons_in_order():
    def fn():
        raise _client_error(
            "TransactionCanceledException",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        )

    with pytest.raises(DdbConflict) as ei:
        ddb_call("TransactWriteItems", fn)
    assert ei.value.cancellation_reasons == ["None", "ConditionalCheckFailed"]
    assert ei.value.failed_actions() == [1]
    assert ei.value.code == "TransactionCanceledException"


def test_validation_error_mapping():
    def fn():
        raise _client_error("ValidationException")

    with pytest.raises(DdbValidation):
        ddb_call("Query", fn)


def test_next_token_is_opaque_and_bound_to_secret():
    lek = {"pk": "USER#u1", "sk": "PROFILE", "gsi1pk": "USERS"}
    tok = encode_next_token(lek, secret="s1")
    assert "USER#u1" not in tok
    assert decode_next_token(tok, secret="s1") == lek
    assert encode_next_token(None, secret="s1") is None
    assert decode_next_token(None, secret="s1") is None

    with pytest.raises(DdbValidation):
        decode_next_token(tok, secret="s2")
    with pytest.raises(DdbValidation):
        decode_next_token("c1.not-base64!!", secret="s1")
    with pytest.raises(DdbValidation):
        decode_next_token("garbage", secret="s1")
