"""
AEAD provider interface.

A provider wraps one authenticated-encryption construction together with
the key-derivation function used for it. Providers are stateless and may
be shared across threads.
"""
import os
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

from ...exceptions import ConfigurationError


class EncryptResult(NamedTuple):
    ciphertext: bytes
    nonce: bytes
    auth_tag: bytes


class ProviderDescriptor(NamedTuple):
    algorithm: str
    priority: int
    available: bool


class AEADProvider(ABC):
    """Base class for authenticated-encryption providers.

    Subclasses set ``algorithm``, ``priority``, ``nonce_length`` and
    implement the cipher and KDF primitives. Tag comparison is left to the
    underlying library, which verifies tags in constant time.
    """

    algorithm: str = ""
    priority: int = 0
    key_length: int = 32
    nonce_length: int = 12
    auth_tag_length: int = 16

    @classmethod
    def is_available(cls) -> bool:
        """Return True when the provider's backend can be used."""
        return True

    @classmethod
    def descriptor(cls) -> ProviderDescriptor:
        return ProviderDescriptor(cls.algorithm, cls.priority, cls.is_available())

    def required_key_length(self) -> int:
        return self.key_length

    def required_nonce_length(self) -> int:
        return self.nonce_length

    def required_tag_length(self) -> int:
        return self.auth_tag_length

    def generate_nonce(self) -> bytes:
        """Return a fresh random nonce of the required length."""
        return os.urandom(self.nonce_length)

    def validate_key(self, key: bytes, label: str = "Key") -> None:
        if key is None:
            raise ConfigurationError(f"{label} cannot be None", algorithm=self.algorithm)
        if len(key) != self.key_length:
            raise ConfigurationError(
                f"{label} must be exactly {self.key_length} bytes, got {len(key)}",
                algorithm=self.algorithm,
            )

    @abstractmethod
    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptResult:
        """Encrypt ``plaintext`` with a fresh random nonce."""

    @abstractmethod
    def decrypt(
        self,
        ciphertext: bytes,
        key: bytes,
        nonce: bytes,
        auth_tag: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """Verify and decrypt.

        Raises:
            AuthenticationFailed: when the tag does not verify.
        """

    @abstractmethod
    def derive_key(
        self,
        master_key: bytes,
        context: bytes,
        personalization: bytes,
    ) -> bytes:
        """Derive a subkey of ``key_length`` bytes bound to ``context``."""

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} algorithm={self.algorithm!r} "
            f"priority={self.priority}>"
        )
