import pytest

from supergin.errors import ErrorCode, SuperGinError, is_error_code


def test_message_without_cause():
    err = SuperGinError(ErrorCode.ROUTE_NOT_FOUND, "route 'home' not found")
    assert str(err) == "[ROUTE_NOT_FOUND] route 'home' not found"
    assert err.cause is None


def test_message_with_cause():
    cause = ValueError("boom")
    err = SuperGinError(ErrorCode.VALIDATION_FAILED, "binding error", cause)
    assert str(err) == "[VALIDATION_FAILED] binding error: boom"
    assert err.__cause__ is cause
    assert err.cause is cause


def test_code_accepts_string_value():
    err = SuperGinError("CONTEXT_REQUIRED", "needs context")
    assert err.code is ErrorCode.CONTEXT_REQUIRED


def test_is_error_code_matches():
    err = SuperGinError(ErrorCode.CIRCULAR_DEPENDENCY, "loop")
    assert is_error_code(err, ErrorCode.CIRCULAR_DEPENDENCY)
    assert not is_error_code(err, ErrorCode.INVALID_FACTORY)


def test_is_error_code_other_exceptions():
    assert not is_error_code(RuntimeError("x"), ErrorCode.ROUTE_NOT_FOUND)
    assert not is_error_code(None, ErrorCode.ROUTE_NOT_FOUND)


def test_raised_error_keeps_code_and_message():
    err = SuperGinError(ErrorCode.DI_SERVICE_NOT_FOUND, "missing")
    with pytest.raises(SuperGinError) as info:
        raise err
    caught = info.value
    assert caught.code is ErrorCode.DI_SERVICE_NOT_FOUND
    assert caught.message == "missing"
    assert str(caught) == "[DI_SERVICE_NOT_FOUND] missing"
    assert is_error_code(caught, ErrorCode.DI_SERVICE_NOT_FOUND)