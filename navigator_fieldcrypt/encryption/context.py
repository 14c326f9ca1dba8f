"""
Encryption context and Additional Authenticated Data.

An ``EncryptionContext`` names what is being encrypted (record type, field
name and record identifier) and carries a snapshot of the plaintext
attribute values that are bound to the ciphertext as AAD.
"""
import struct
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Optional
from collections.abc import Mapping, Sequence

from ..exceptions import EncryptionError

_LENGTH = struct.Struct("!I")
_NONE_MARKER = 0xFFFFFFFF


@dataclass(frozen=True)
class EncryptionContext:
    record_type: str
    field_name: str
    record_identifier: str
    aad_values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("record_type", "field_name", "record_identifier"):
            value = getattr(self, name)
            if value is None or str(value) == "":
                raise ValueError(f"EncryptionContext.{name} cannot be empty")
            object.__setattr__(self, name, str(value))
        # snapshot, so later changes to the caller's mapping are not seen
        object.__setattr__(
            self, "aad_values", MappingProxyType(dict(self.aad_values))
        )

    def canonical(self) -> str:
        return f"{self.record_type}:{self.field_name}:{self.record_identifier}"

    def canonical_bytes(self) -> bytes:
        return self.canonical().encode("utf-8")

    def with_aad(self, **values: Any) -> "EncryptionContext":
        """Return a copy with ``values`` added to the AAD snapshot."""
        merged = dict(self.aad_values)
        merged.update(values)
        return EncryptionContext(
            self.record_type, self.field_name, self.record_identifier, merged
        )

    def metadata(self) -> dict:
        """Non-secret fields safe for error messages and logs."""
        return {"record_type": self.record_type, "field_name": self.field_name}

    def __repr__(self) -> str:
        return (
            f"EncryptionContext(record_type={self.record_type!r}, "
            f"field_name={self.field_name!r}, "
            f"aad_fields={list(self.aad_values)!r})"
        )


def _encode_value(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return str(value).encode("utf-8")


def build_aad(
    context: EncryptionContext,
    aad_fields: Sequence[str] = (),
) -> Optional[bytes]:
    """Length-prefixed concatenation of the selected AAD values.

    ``aad_fields`` selects which context values are bound and in which
    order; when empty, every value is bound in insertion order. Each value
    is prefixed with its 4-byte big-endian length, ``None`` with the
    reserved length 0xFFFFFFFF. Returns None when nothing is bound.

    Raises:
        EncryptionError: if a requested field is not present in the context.
    """
    names = list(aad_fields) if aad_fields else list(context.aad_values)
    if not names:
        return None
    chunks = []
    for name in names:
        if name not in context.aad_values:
            raise EncryptionError(
                f"AAD field {name!r} missing from encryption context",
                **context.metadata(),
            )
        value = context.aad_values[name]
        if value is None:
            chunks.append(_LENGTH.pack(_NONE_MARKER))
            continue
        raw = _encode_value(value)
        chunks.append(_LENGTH.pack(len(raw)))
        chunks.append(raw)
    return b"".join(chunks)
