"""
Tests for FieldCrypt configuration.

Tests cover:
- MasterKeyRing construction, lookup and rotation helpers
- Environment loading of master keys
- EncryptionConfig validation
"""
import base64
import pytest
from pydantic import ValidationError

from navigator_fieldcrypt.exceptions import ConfigurationError, UnknownKeyVersion
from navigator_fieldcrypt.encryption import (
    EncryptionConfig,
    MasterKeyRing,
    generate_master_key,
    load_master_keys,
)
from navigator_fieldcrypt.encryption.config import (
    DEFAULT_PERSONALIZATION,
    check_personalization,
    get_current_key_version,
)

KEY_A = bytes(range(32))
KEY_B = bytes(range(32, 64))


def _b64(key: bytes) -> str:
    return base64.b64encode(key).decode("ascii")


@pytest.fixture
def environ():
    return {
        "FIELDCRYPT_MASTER_KEY_v1": _b64(KEY_A),
        "FIELDCRYPT_MASTER_KEY_v2": _b64(KEY_B),
        "FIELDCRYPT_CURRENT_KEY_VERSION": "v2",
        "UNRELATED": "value",
    }


class TestMasterKeyRing:
    """Tests for MasterKeyRing."""

    def test_accepts_base64_keys(self):
        ring = MasterKeyRing(keys={"v1": _b64(KEY_A)}, current_version="v1")
        assert ring.get("v1") == KEY_A
        assert ring.current_key() == KEY_A

    def test_normalizes_versions(self):
        ring = MasterKeyRing(keys={1: KEY_A}, current_version=1)
        assert ring.versions == ["1"]
        assert ring.current_version == "1"
        assert 1 in ring

    def test_invalid_base64(self):
        with pytest.raises(ValidationError):
            MasterKeyRing(keys={"v1": "not base64!!"}, current_version="v1")

    def test_from_mapping_wraps_validation_errors(self):
        with pytest.raises(ConfigurationError):
            MasterKeyRing.from_mapping({"v1": "not base64!!"}, "v1")

    def test_repr_hides_keys(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v1")
        assert repr(KEY_A) not in repr(ring)
        assert _b64(KEY_A) not in repr(ring)

    def test_unknown_version(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v1")
        with pytest.raises(UnknownKeyVersion) as exc_info:
            ring.get("v9")
        assert exc_info.value.key_version == "v9"

    def test_immutable(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v1")
        with pytest.raises(ValidationError):
            ring.current_version = "v2"

    def test_validate_ring(self):
        MasterKeyRing(keys={"v1": KEY_A}, current_version="v1").validate_ring()

    def test_validate_ring_empty(self):
        with pytest.raises(ConfigurationError):
            MasterKeyRing(keys={}, current_version="v1").validate_ring()

    def test_validate_ring_missing_current(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v2")
        with pytest.raises(ConfigurationError) as exc_info:
            ring.validate_ring()
        assert exc_info.value.key_version == "v2"

    def test_validate_ring_wrong_key_length(self):
        ring = MasterKeyRing(keys={"v1": b"short"}, current_version="v1")
        with pytest.raises(ConfigurationError):
            ring.validate_ring()

    def test_with_key(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v1")
        added = ring.with_key("v2", KEY_B)
        assert added.versions == ["v1", "v2"]
        assert added.current_version == "v1"
        assert ring.versions == ["v1"]
        current = ring.with_key("v2", KEY_B, make_current=True)
        assert current.current_version == "v2"

    def test_with_current(self):
        ring = MasterKeyRing(keys={"v1": KEY_A, "v2": KEY_B}, current_version="v1")
        assert ring.with_current("v2").current_version == "v2"
        with pytest.raises(ConfigurationError):
            ring.with_current("v3")

    def test_without(self):
        ring = MasterKeyRing(keys={"v1": KEY_A, "v2": KEY_B}, current_version="v2")
        assert ring.without("v1").versions == ["v2"]
        with pytest.raises(ConfigurationError):
            ring.without("v2")


class TestEnvironmentLoading:
    """Tests for loading keys from the environment."""

    def test_load_master_keys(self, environ):
        keys = load_master_keys(environ)
        assert keys == {"v1": KEY_A, "v2": KEY_B}

    def test_natural_version_order(self):
        environ = {
            "FIELDCRYPT_MASTER_KEY_v10": _b64(KEY_A),
            "FIELDCRYPT_MASTER_KEY_v2": _b64(KEY_B),
            "FIELDCRYPT_MASTER_KEY_v1": _b64(KEY_A),
        }
        assert list(load_master_keys(environ)) == ["v1", "v2", "v10"]

    def test_no_keys(self):
        with pytest.raises(ConfigurationError):
            load_master_keys({"PATH": "/usr/bin"})

    def test_invalid_base64(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_master_keys({"FIELDCRYPT_MASTER_KEY_v1": "%%%"})
        assert exc_info.value.key_version == "v1"

    def test_wrong_length(self):
        with pytest.raises(ConfigurationError):
            load_master_keys({"FIELDCRYPT_MASTER_KEY_v1": _b64(b"x" * 16)})

    def test_current_key_version(self, environ):
        assert get_current_key_version(environ) == "v2"
        with pytest.raises(ConfigurationError):
            get_current_key_version({})

    def test_config_from_env(self, environ):
        environ["FIELDCRYPT_PERSONALIZATION"] = "MyApp"
        environ["FIELDCRYPT_ALGORITHM"] = "aes-256-gcm"
        config = EncryptionConfig.from_env(environ)
        assert config.key_ring.current_version == "v2"
        assert config.key_ring.versions == ["v1", "v2"]
        assert config.personalization == "MyApp"
        assert config.default_algorithm == "aes-256-gcm"

    def test_config_from_env_defaults(self, environ):
        config = EncryptionConfig.from_env(environ)
        assert config.personalization == DEFAULT_PERSONALIZATION
        assert config.default_algorithm is None
        assert config.rotation_batch_size == 100

    def test_config_from_env_bad_personalization(self, environ):
        environ["FIELDCRYPT_PERSONALIZATION"] = "x" * 17
        with pytest.raises(ConfigurationError):
            EncryptionConfig.from_env(environ)

    def test_generate_master_key(self):
        key = generate_master_key()
        assert len(base64.b64decode(key)) == 32
        assert generate_master_key() != key


class TestPersonalization:
    """Tests for personalization validation."""

    def test_padded_to_block(self):
        assert check_personalization("abc") == b"abc" + b"\0" * 13

    def test_sixteen_bytes_allowed(self):
        assert check_personalization("p" * 16) == b"p" * 16

    def test_too_long(self):
        with pytest.raises(ConfigurationError):
            check_personalization("p" * 17)

    def test_null_byte(self):
        with pytest.raises(ConfigurationError):
            check_personalization("bad\0value")

    def test_config_rejects_invalid_personalization(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v1")
        with pytest.raises(ValidationError):
            EncryptionConfig(key_ring=ring, personalization="bad\0value")

    def test_batch_size_bounds(self):
        ring = MasterKeyRing(keys={"v1": KEY_A}, current_version="v1")
        with pytest.raises(ValidationError):
            EncryptionConfig(key_ring=ring, rotation_batch_size=0)
