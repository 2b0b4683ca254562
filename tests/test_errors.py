from mindspend.core.errors import (
    BackendError, FailureKind, Result, classify_error, is_client_blocked_error,
)


def test_blocked_by_client_detection():
    assert is_client_blocked_error("net::ERR_BLOCKED_BY_CLIENT")
    assert is_client_blocked_error(RuntimeError("request blocked by client"))
    assert is_client_blocked_error({"code": "ERR_BLOCKED_BY_CLIENT"})
    assert not is_client_blocked_error(RuntimeError("disk full"))
    assert not is_client_blocked_error(None)


def test_classify_error():
    assert classify_error(BackendError(FailureKind.WEAK_SECRET)) == FailureKind.WEAK_SECRET
    assert classify_error(OSError("ERR_BLOCKED_BY_CLIENT")) == FailureKind.NETWORK_BLOCKED
    assert classify_error(ValueError("boom")) == FailureKind.UNKNOWN


def test_result_fail_carries_kind_and_message():
    result = Result.fail(BackendError(FailureKind.EMAIL_IN_USE))
    assert not result.ok
    assert result.failure.kind == FailureKind.EMAIL_IN_USE
    assert "already registered" in result.failure.message


def test_result_fail_hides_unknown_error_details():
    result = Result.fail(KeyError("internal detail"))
    assert result.failure.kind == FailureKind.UNKNOWN
    assert "internal detail" not in result.failure.message


def test_result_success():
    result = Result.success(42)
    assert result.ok
    assert result.value == 42
    assert result.failure is None
