from __future__ import annotations

import json

import requests

from careconnect.core.error_reporter import ErrorReporter, normalize_exception
from careconnect.core.errors import (
    AuthError,
    AuthErrorReason,
    CareConnectError,
    DataErrorReason,
    MutationError,
    SubscriptionError,
)


def test_auth_messages_are_distinct():
    msgs = {AuthError(r).user_message for r in AuthErrorReason}
    assert len(msgs) == len(list(AuthErrorReason))


def test_codes_carry_family_and_reason():
    assert AuthError(AuthErrorReason.expired_token).code == "auth_expired_token"
    e = SubscriptionError(DataErrorReason.partition_not_found, "clients")
    assert e.code == "subscription_partition_not_found"
    assert e.to_dict()["context"]["partition"] == "clients"
    assert MutationError(DataErrorReason.validation_failed, "leave").code == "mutation_validation_failed"


def test_to_dict_redacts_context():
    e = AuthError(AuthErrorReason.invalid_credentials, password="hunter2")
    assert "hunter2" not in json.dumps(e.to_dict())


def test_normalize_network_errors_by_subsystem():
    boom = requests.ConnectionError("down")
    assert isinstance(normalize_exception(boom, subsystem="session", context={}), AuthError)
    sub = normalize_exception(boom, subsystem="sync", context={"partition": "clients"})
    assert isinstance(sub, SubscriptionError) and sub.partition == "clients"
    assert isinstance(normalize_exception(boom, subsystem="api", context={}), MutationError)


def test_normalize_passes_through_and_falls_back():
    err = AuthError(AuthErrorReason.expired_token)
    assert normalize_exception(err, subsystem="web", context={}) is err
    other = normalize_exception(RuntimeError("x"), subsystem="web", context={})
    assert isinstance(other, CareConnectError) and other.code == "unknown_error"


def test_reporter_writes_redacted_jsonl(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p))
    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        out = r.report_exception(e, trace_id="t1", subsystem="web", context={"api_key": "SECRET", "x": 1})
    assert out.user_message
    obj = json.loads(p.read_text(encoding="utf-8").splitlines()[-1])
    assert obj["trace_id"] == "t1"
    assert "SECRET" not in json.dumps(obj)
    assert r.tail(1)[0]["trace_id"] == "t1"
