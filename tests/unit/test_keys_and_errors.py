import pytest

from scstorage.errors import (
    InvalidKeyError,
    NativeRequestError,
    RecordNotFoundError,
    RequestTimeoutError,
    ScStorageError,
    ValidationError,
)
from scstorage.facade import validate_key


@pytest.mark.parametrize('key', ['abc', 'a.b-c_d', 'ABC123', 42, 1.5])
def test_valid_keys(key):
    assert validate_key(key) == str(key)


def test_invalid_key_lists_offending_characters():
    with pytest.raises(InvalidKeyError) as exc:
        validate_key('bad key/with$')
    assert str(exc.value) == 'The key "bad key/with$" is invalid. Please remove the following characters:  ,/,$'
    assert exc.value.invalid == [' ', '/', '$']


@pytest.mark.parametrize('key', ['', True, None, {'a': 1}])
def test_rejected_key_types(key):
    with pytest.raises(InvalidKeyError):
        validate_key(key)


def test_error_hierarchy():
    assert issubclass(InvalidKeyError, ValidationError)
    assert issubclass(ValidationError, ValueError)
    assert issubclass(RecordNotFoundError, KeyError)
    assert issubclass(RequestTimeoutError, TimeoutError)
    for cls in (ValidationError, RecordNotFoundError, NativeRequestError, RequestTimeoutError):
        assert issubclass(cls, ScStorageError)


def test_record_not_found_message_is_not_quoted():
    assert str(RecordNotFoundError('Id 7 not found.')) == 'Id 7 not found.'


def test_native_request_error_keeps_name():
    err = NativeRequestError('boom', name='ConstraintError')
    assert err.name == 'ConstraintError'
    assert str(err) == 'boom'
