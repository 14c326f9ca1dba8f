"""
FieldCrypt Configuration — Master key ring and validated settings.

Reads master keys from environment variables in the format:
    FIELDCRYPT_MASTER_KEY_{version} = <base64-encoded 32-byte key>
    FIELDCRYPT_CURRENT_KEY_VERSION = <version>
    FIELDCRYPT_PERSONALIZATION = <up to 16 bytes, optional>
    FIELDCRYPT_ALGORITHM = <algorithm id, optional>

The configuration objects are immutable. Key rotation builds a new
``MasterKeyRing`` (``with_key``, ``with_current``, ``without``) instead of
mutating the one in use.

Security Note:
    Never log key material. Only log key versions.
"""
import os
import re
import base64
import binascii
import secrets
import logging
from typing import Optional
from collections.abc import Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import ConfigurationError, UnknownKeyVersion

logger = logging.getLogger("navigator.fieldcrypt")

MASTER_KEY_LENGTH = 32
PERSONALIZATION_LENGTH = 16
DEFAULT_PERSONALIZATION = "NavigatorFC"

_KEY_ENV_PREFIX = "FIELDCRYPT_MASTER_KEY_"
_KEY_ENV_PATTERN = re.compile(r"^FIELDCRYPT_MASTER_KEY_(\w+)$")
_VERSION_PARTS = re.compile(r"(\d+)")


def _version_sort_key(version: str) -> list:
    """Natural sort key, so that ``v10`` comes after ``v2``."""
    return [
        int(part) if part.isdigit() else part
        for part in _VERSION_PARTS.split(version)
    ]


def check_personalization(value: str) -> bytes:
    """Validate a personalization string and return it NUL-padded to 16 bytes.

    Raises:
        ConfigurationError: if it contains NUL bytes or exceeds 16 bytes.
    """
    raw = value.encode("utf-8")
    if b"\0" in raw:
        raise ConfigurationError(
            "Personalization string must not contain null bytes"
        )
    if len(raw) > PERSONALIZATION_LENGTH:
        raise ConfigurationError(
            f"Personalization string must be at most {PERSONALIZATION_LENGTH} "
            f"bytes, got {len(raw)}"
        )
    return raw.ljust(PERSONALIZATION_LENGTH, b"\0")


class MasterKeyRing(BaseModel):
    """Ordered mapping of key version to raw master key bytes.

    ``current_version`` selects the key used for new encryptions. Every
    version still referenced by a stored envelope must stay in the ring
    until the data under it has been rotated away.
    """

    keys: dict[str, bytes] = Field(repr=False)
    current_version: str

    model_config = {"frozen": True}

    @field_validator("keys", mode="before")
    @classmethod
    def decode_keys(cls, v: Mapping) -> dict:
        """Accept raw bytes or base64 strings; normalize versions to str."""
        if not isinstance(v, Mapping):
            raise ValueError("keys must be a mapping of version to key")
        decoded: dict[str, bytes] = {}
        for version, key in v.items():
            if isinstance(key, str):
                try:
                    key = base64.b64decode(key, validate=True)
                except (binascii.Error, ValueError):
                    raise ValueError(
                        f"Master key {version} is not valid base64"
                    ) from None
            elif isinstance(key, (bytearray, memoryview)):
                key = bytes(key)
            decoded[str(version)] = key
        return decoded

    @field_validator("current_version", mode="before")
    @classmethod
    def normalize_version(cls, v) -> str:
        return str(v)

    @classmethod
    def from_mapping(
        cls,
        keys: Mapping,
        current_version: str,
    ) -> "MasterKeyRing":
        """Build a key ring, reporting validation problems as ConfigurationError."""
        try:
            return cls(keys=keys, current_version=current_version)
        except ValidationError as err:
            raise ConfigurationError(
                f"Invalid master key ring: {err.error_count()} error(s)"
            ) from err

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def versions(self) -> list[str]:
        return list(self.keys.keys())

    def __contains__(self, version: object) -> bool:
        return str(version) in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def get(self, version: str) -> bytes:
        """Return the master key for ``version``.

        Raises:
            UnknownKeyVersion: if the version is not in the ring.
        """
        try:
            return self.keys[str(version)]
        except KeyError:
            raise UnknownKeyVersion(
                "No master key for version",
                key_version=str(version),
            ) from None

    def current_key(self) -> bytes:
        return self.get(self.current_version)

    def validate_ring(self) -> None:
        """Check the ring is usable.

        Raises:
            ConfigurationError: if the ring is empty, the current version is
                missing, or any key is not exactly 32 bytes.
        """
        if not self.keys:
            raise ConfigurationError("No master keys configured")
        if self.current_version not in self.keys:
            raise ConfigurationError(
                "Current key version not found in key ring",
                key_version=self.current_version,
            )
        for version, key in self.keys.items():
            if len(key) != MASTER_KEY_LENGTH:
                raise ConfigurationError(
                    f"Master key must be exactly {MASTER_KEY_LENGTH} bytes, "
                    f"got {len(key)}",
                    key_version=version,
                )

    # ------------------------------------------------------------------
    # Rotation helpers (return new rings)
    # ------------------------------------------------------------------

    def with_key(
        self,
        version: str,
        key: bytes,
        make_current: bool = False,
    ) -> "MasterKeyRing":
        """Return a new ring with ``version`` added (or replaced)."""
        keys = dict(self.keys)
        keys[str(version)] = key
        current = str(version) if make_current else self.current_version
        return type(self)(keys=keys, current_version=current)

    def with_current(self, version: str) -> "MasterKeyRing":
        """Return a new ring whose current version is ``version``."""
        if str(version) not in self.keys:
            raise ConfigurationError(
                "Cannot select a key version that is not in the ring",
                key_version=str(version),
            )
        return type(self)(keys=dict(self.keys), current_version=str(version))

    def without(self, version: str) -> "MasterKeyRing":
        """Return a new ring with ``version`` removed.

        The current version cannot be removed.
        """
        version = str(version)
        if version == self.current_version:
            raise ConfigurationError(
                "Cannot remove the current key version",
                key_version=version,
            )
        keys = {k: v for k, v in self.keys.items() if k != version}
        return type(self)(keys=keys, current_version=self.current_version)


def load_master_keys(environ: Optional[Mapping[str, str]] = None) -> dict[str, bytes]:
    """Load master keys from FIELDCRYPT_MASTER_KEY_{version} variables.

    Each value must be base64-encoded and decode to exactly 32 bytes.

    Returns:
        Mapping of key version to raw 32-byte key, naturally sorted by version.

    Raises:
        ConfigurationError: If no key is found or a key is malformed.
    """
    environ = os.environ if environ is None else environ
    keys: dict[str, bytes] = {}
    for name, value in environ.items():
        match = _KEY_ENV_PATTERN.match(name)
        if not match:
            continue
        version = match.group(1)
        try:
            key_bytes = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise ConfigurationError(
                f"{name} is not valid base64", key_version=version
            ) from None
        if len(key_bytes) != MASTER_KEY_LENGTH:
            raise ConfigurationError(
                f"{name} must decode to exactly {MASTER_KEY_LENGTH} bytes, "
                f"got {len(key_bytes)}",
                key_version=version,
            )
        keys[version] = key_bytes
    if not keys:
        raise ConfigurationError(
            "No master keys found in environment. "
            f"Set {_KEY_ENV_PREFIX}v1=<base64-encoded-32-byte-key>"
        )
    ordered = {v: keys[v] for v in sorted(keys, key=_version_sort_key)}
    logger.debug(
        "Loaded %d master key version(s): %s", len(ordered), list(ordered)
    )
    return ordered


def get_current_key_version(environ: Optional[Mapping[str, str]] = None) -> str:
    """Read the current master key version from FIELDCRYPT_CURRENT_KEY_VERSION.

    Raises:
        ConfigurationError: If the variable is not set.
    """
    environ = os.environ if environ is None else environ
    raw = environ.get("FIELDCRYPT_CURRENT_KEY_VERSION")
    if not raw:
        raise ConfigurationError(
            "FIELDCRYPT_CURRENT_KEY_VERSION environment variable is not set"
        )
    return raw


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return as base64 string.

    This is a utility for operators to generate new keys.
    """
    return base64.b64encode(secrets.token_bytes(MASTER_KEY_LENGTH)).decode("ascii")


class EncryptionConfig(BaseModel):
    """Validated engine configuration."""

    key_ring: MasterKeyRing
    personalization: str = Field(default=DEFAULT_PERSONALIZATION)
    default_algorithm: Optional[str] = Field(default=None)
    rotation_batch_size: int = Field(default=100, ge=1, le=10000)

    model_config = {"frozen": True}

    @field_validator("personalization")
    @classmethod
    def validate_personalization(cls, v: str) -> str:
        """Personalization must fit a 16-byte BLAKE2b block without NULs."""
        try:
            check_personalization(v)
        except ConfigurationError as err:
            raise ValueError(err.message) from None
        return v

    def with_key_ring(self, key_ring: MasterKeyRing) -> "EncryptionConfig":
        """Return a copy of this configuration using another key ring."""
        return self.model_copy(update={"key_ring": key_ring})

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "EncryptionConfig":
        """Create EncryptionConfig by loading values from environment.

        Raises:
            ConfigurationError: on missing or invalid settings.
        """
        environ = os.environ if environ is None else environ
        key_ring = MasterKeyRing.from_mapping(
            load_master_keys(environ),
            get_current_key_version(environ),
        )
        try:
            return cls(
                key_ring=key_ring,
                personalization=environ.get(
                    "FIELDCRYPT_PERSONALIZATION", DEFAULT_PERSONALIZATION
                ),
                default_algorithm=environ.get("FIELDCRYPT_ALGORITHM") or None,
            )
        except ValidationError as err:
            raise ConfigurationError(
                f"Invalid encryption configuration: {err.error_count()} error(s)"
            ) from err
