"""
Encrypted field declarations.

An ``EncryptedField`` binds a field name to its AAD source fields and an
optional pinned algorithm, and implements the host hooks called before a
write (``encrypt_value``) and after a read (``decrypt_value``).
"""
from typing import Any, Optional
from collections.abc import Mapping, Sequence

from .concealed import ConcealedValue
from .encryption.context import EncryptionContext
from .encryption.manager import EncryptionManager, Plaintext


class EncryptedField:
    """An attribute whose value is stored as an envelope.

    Args:
        name: attribute name, part of the key-derivation context.
        aad_fields: plaintext attributes bound to the ciphertext as AAD.
        algorithm: pin a provider for this field instead of the default.
    """

    def __init__(
        self,
        name: str,
        aad_fields: Sequence[str] = (),
        algorithm: Optional[str] = None,
    ) -> None:
        if not name:
            raise ValueError("Encrypted field name cannot be empty")
        if name in aad_fields:
            raise ValueError(f"Field {name!r} cannot be its own AAD source")
        self.name = name
        self.aad_fields = tuple(aad_fields)
        self.algorithm = algorithm

    def context(
        self,
        record_type: str,
        record_identifier: Any,
        aad_values: Optional[Mapping[str, Any]] = None,
    ) -> EncryptionContext:
        """Build the context, snapshotting the AAD source values."""
        aad_values = aad_values or {}
        snapshot = {name: aad_values.get(name) for name in self.aad_fields}
        return EncryptionContext(record_type, self.name, record_identifier, snapshot)

    def encrypt_value(
        self,
        manager: EncryptionManager,
        record_type: str,
        record_identifier: Any,
        value: Optional[Plaintext],
        aad_values: Optional[Mapping[str, Any]] = None,
    ) -> Optional[bytes]:
        """Call-before-write hook. ``None`` stays ``None``."""
        if value is None:
            return None
        if isinstance(value, ConcealedValue):
            raise TypeError(
                f"Assign plaintext to {self.name!r}, not a ConcealedValue"
            )
        context = self.context(record_type, record_identifier, aad_values)
        return manager.encrypt(
            value, context, self.aad_fields, algorithm=self.algorithm
        )

    def decrypt_value(
        self,
        manager: EncryptionManager,
        record_type: str,
        record_identifier: Any,
        envelope: Optional[bytes],
        aad_values: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ConcealedValue]:
        """Call-after-read hook. ``None`` stays ``None``."""
        if envelope is None:
            return None
        context = self.context(record_type, record_identifier, aad_values)
        return manager.decrypt(envelope, context, self.aad_fields)

    def __repr__(self) -> str:
        return (
            f"EncryptedField({self.name!r}, aad_fields={self.aad_fields!r}, "
            f"algorithm={self.algorithm!r})"
        )
