"""
Tests for ConcealedValue.

Tests cover:
- Placeholder rendering in every default representation
- Scoped and unscoped access
- Clearing and AlreadyCleared
- Refusal of pickling and copying
- Origin metadata and context ownership
"""
import copy
import json
import pickle
import jsonpickle
import orjson
import pytest

from navigator_fieldcrypt.concealed import (
    PLACEHOLDER,
    ConcealedValue,
    json_default,
)
from navigator_fieldcrypt.encryption import EncryptionContext
from navigator_fieldcrypt.exceptions import AlreadyCleared

SECRET = "hello world"


@pytest.fixture
def value():
    return ConcealedValue(SECRET)


class TestRendering:
    """No default representation leaks the plaintext."""

    def test_str_and_repr(self, value):
        assert str(value) == PLACEHOLDER
        assert repr(value) == PLACEHOLDER

    def test_interpolation(self, value):
        assert f"{value}" == PLACEHOLDER
        assert "%s" % value == PLACEHOLDER
        assert "{}".format(value) == PLACEHOLDER
        assert f"{value:>15}" == f"{PLACEHOLDER:>15}"

    def test_bytes(self, value):
        assert bytes(value) == PLACEHOLDER.encode()

    def test_container_repr(self, value):
        text = repr({"diary_entry": value, "items": [value]})
        assert SECRET not in text
        assert PLACEHOLDER in text

    def test_orjson(self, value):
        data = orjson.dumps({"diary_entry": value}, default=json_default)
        assert orjson.loads(data) == {"diary_entry": PLACEHOLDER}

    def test_stdlib_json(self, value):
        data = json.dumps({"diary_entry": value}, default=json_default)
        assert SECRET not in data
        assert PLACEHOLDER in data

    def test_json_default_rejects_other_types(self):
        with pytest.raises(TypeError):
            json_default(object())

    def test_jsonpickle(self, value):
        data = jsonpickle.encode({"diary_entry": value})
        assert SECRET not in data
        assert PLACEHOLDER in data

    def test_jsonpickle_restores_cleared(self, value):
        restored = jsonpickle.decode(jsonpickle.encode(value))
        assert isinstance(restored, ConcealedValue)
        assert restored.cleared is True

    def test_pickle_refused(self, value):
        with pytest.raises(TypeError):
            pickle.dumps(value)

    def test_copy_refused(self, value):
        with pytest.raises(TypeError):
            copy.copy(value)
        with pytest.raises(TypeError):
            copy.deepcopy(value)


class TestAccess:
    """Tests for reveal/revealed/unwrap."""

    def test_reveal_bytes(self, value):
        assert value.reveal(lambda plaintext: plaintext) == SECRET.encode()

    def test_reveal_with_encoding(self, value):
        assert value.reveal(str.upper, encoding="utf-8") == SECRET.upper()

    def test_reveal_clears(self, value):
        value.reveal(len)
        assert value.cleared is True
        with pytest.raises(AlreadyCleared):
            value.reveal(len)

    def test_reveal_clears_when_callback_raises(self, value):
        def fail(plaintext):
            raise ValueError("callback failed")

        with pytest.raises(ValueError):
            value.reveal(fail)
        assert value.cleared is True

    def test_revealed_context(self, value):
        with value.revealed("utf-8") as plaintext:
            assert plaintext == SECRET
        assert value.cleared is True

    def test_unwrap_does_not_clear(self, value):
        assert value.unwrap("utf-8") == SECRET
        assert value.unwrap() == SECRET.encode()
        assert value.cleared is False

    def test_bytes_plaintext(self):
        value = ConcealedValue(b"\x00\xff")
        assert value.unwrap() == b"\x00\xff"

    def test_empty_plaintext(self):
        assert ConcealedValue(b"").unwrap() == b""


class TestClear:
    """Tests for clearing."""

    def test_clear(self, value):
        value.clear()
        assert value.cleared is True
        with pytest.raises(AlreadyCleared):
            value.unwrap()

    def test_clear_twice(self, value):
        value.clear()
        value.clear()
        assert value.cleared is True

    def test_cleared_still_renders_placeholder(self, value):
        value.clear()
        assert str(value) == PLACEHOLDER


class TestIdentity:
    """Equality and hashing never compare plaintexts."""

    def test_equal_plaintexts_not_equal(self):
        assert ConcealedValue(SECRET) != ConcealedValue(SECRET)

    def test_equal_to_itself(self, value):
        assert value == value
        assert value != SECRET

    def test_hash_by_identity(self, value):
        other = ConcealedValue(SECRET)
        assert len({value, other}) == 2

    def test_read_only(self, value):
        with pytest.raises(AttributeError):
            value._buffer = bytearray(b"replaced")


class TestOrigin:
    """Values remember the record and field they were decrypted for."""

    def test_no_origin(self, value):
        assert value.origin is None
        assert value.belongs_to_context(EncryptionContext("User", "ssn", "u1")) is False

    def test_origin(self):
        value = ConcealedValue(SECRET, EncryptionContext("User", "ssn", 1))
        assert value.origin == ("User", "ssn", "1")

    def test_belongs_to_context(self):
        context = EncryptionContext("User", "ssn", "u1", {"email": "a@example.com"})
        value = ConcealedValue(SECRET, context)
        assert value.belongs_to_context(EncryptionContext("User", "ssn", "u1")) is True
        assert value.belongs_to_context(EncryptionContext("User", "ssn", "u2")) is False
        assert value.belongs_to_context(EncryptionContext("User", "email", "u1")) is False
        assert value.belongs_to_context(EncryptionContext("Account", "ssn", "u1")) is False
        assert value.belongs_to_context(None) is False

    def test_origin_survives_clear(self):
        value = ConcealedValue(SECRET, EncryptionContext("User", "ssn", "u1"))
        value.clear()
        assert value.belongs_to_context(EncryptionContext("User", "ssn", "u1")) is True
