"""
FieldCrypt exceptions.

Every error raised by the engine derives from ``EncryptionError``. Errors
may carry context metadata (record type, field name, key version and
algorithm) which is appended to the message. Plaintext, master keys and
derived subkeys are never part of an error.
"""
from typing import Optional


class EncryptionError(Exception):
    """Base class for FieldCrypt errors."""

    def __init__(
        self,
        message: str,
        *,
        record_type: Optional[str] = None,
        field_name: Optional[str] = None,
        key_version: Optional[str] = None,
        algorithm: Optional[str] = None,
    ) -> None:
        self.message = message
        self.record_type = record_type
        self.field_name = field_name
        self.key_version = key_version
        self.algorithm = algorithm
        super().__init__(message)

    def metadata(self) -> dict:
        """Return the non-empty context metadata attached to this error."""
        meta = {
            "record_type": self.record_type,
            "field_name": self.field_name,
            "key_version": self.key_version,
            "algorithm": self.algorithm,
        }
        return {k: v for k, v in meta.items() if v is not None}

    def __str__(self) -> str:
        meta = self.metadata()
        if not meta:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in meta.items())
        return f"{self.message} ({details})"


class ConfigurationError(EncryptionError):
    """Invalid engine configuration, detected at startup validation."""


class NoProviderAvailable(ConfigurationError):
    """No registered AEAD provider (or not the requested one) is usable."""


class UnknownAlgorithm(EncryptionError):
    """The algorithm identifier is not registered."""


class MalformedEnvelope(EncryptionError):
    """The stored envelope cannot be parsed."""


class UnknownKeyVersion(EncryptionError):
    """The envelope references a key version absent from the key ring."""


class AuthenticationFailed(EncryptionError):
    """Tag verification failed: tampering, wrong key or corrupted data."""


class AlreadyCleared(EncryptionError):
    """A concealed value was accessed after it had been cleared."""
