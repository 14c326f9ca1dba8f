"""
Envelope Codec — the persisted ciphertext structure.

Wire format (JSON object, field order not significant)::

    {"algorithm": "<id>", "key_version": "<version>",
     "nonce": "<base64>", "ciphertext": "<base64>", "auth_tag": "<base64>"}

The envelope carries everything decryption needs besides the key ring and
the encryption context. Parsing validates structure, algorithm and the
nonce/tag lengths before any decryption is attempted.
"""
import base64
import binascii
from dataclasses import dataclass
from typing import Any, Union

import orjson

from ..exceptions import EncryptionError, MalformedEnvelope
from .registry import ProviderRegistry

REQUIRED_FIELDS = ("algorithm", "key_version", "nonce", "ciphertext", "auth_tag")


@dataclass(frozen=True)
class Envelope:
    algorithm: str
    key_version: str
    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes

    def to_dict(self) -> dict[str, str]:
        return {
            "algorithm": self.algorithm,
            "key_version": self.key_version,
            "nonce": _b64e(self.nonce),
            "ciphertext": _b64e(self.ciphertext),
            "auth_tag": _b64e(self.auth_tag),
        }

    def __repr__(self) -> str:
        return (
            f"Envelope(algorithm={self.algorithm!r}, "
            f"key_version={self.key_version!r}, "
            f"ciphertext_length={len(self.ciphertext)})"
        )


def _b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64d(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedEnvelope(
            f"Invalid Base64 encoding in {name} field"
        ) from None


def _load(data: Union[str, bytes, bytearray, memoryview]) -> Any:
    if isinstance(data, memoryview):
        data = bytes(data)
    if not isinstance(data, (str, bytes, bytearray)):
        raise MalformedEnvelope(
            f"Expected JSON string, got {type(data).__name__}"
        )
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError:
        raise MalformedEnvelope("Invalid JSON structure") from None
    if not isinstance(parsed, dict):
        raise MalformedEnvelope(
            f"Expected JSON object, got {type(parsed).__name__}"
        )
    missing = [name for name in REQUIRED_FIELDS if name not in parsed]
    if missing:
        raise MalformedEnvelope(
            f"Missing required fields: {', '.join(missing)}"
        )
    for name in REQUIRED_FIELDS:
        value = parsed[name]
        if not isinstance(value, str):
            raise MalformedEnvelope(f"Field {name} must be a string")
        # empty plaintext encrypts to an empty ciphertext
        if not value and name != "ciphertext":
            raise MalformedEnvelope(f"Field {name} cannot be empty")
    return parsed


class EnvelopeCodec:
    """Serialize and parse envelopes against a provider registry."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def serialize(self, envelope: Envelope) -> bytes:
        return orjson.dumps(envelope.to_dict())

    def parse(self, data: Union[str, bytes, bytearray, memoryview]) -> Envelope:
        """Parse and validate a serialized envelope.

        Raises:
            MalformedEnvelope: bad JSON, missing fields, bad base64 or lengths.
            UnknownAlgorithm: the algorithm id is not registered.
        """
        parsed = _load(data)
        algorithm = parsed["algorithm"]
        key_version = parsed["key_version"]
        provider = self._registry.get(algorithm)
        nonce = _b64d(parsed["nonce"], "nonce")
        ciphertext = _b64d(parsed["ciphertext"], "ciphertext")
        auth_tag = _b64d(parsed["auth_tag"], "auth_tag")
        if len(nonce) != provider.required_nonce_length():
            raise MalformedEnvelope(
                f"Invalid nonce size: expected {provider.required_nonce_length()} "
                f"bytes, got {len(nonce)}",
                algorithm=algorithm, key_version=key_version,
            )
        if len(auth_tag) != provider.required_tag_length():
            raise MalformedEnvelope(
                f"Invalid auth_tag size: expected {provider.required_tag_length()} "
                f"bytes, got {len(auth_tag)}",
                algorithm=algorithm, key_version=key_version,
            )
        return Envelope(algorithm, key_version, nonce, ciphertext, auth_tag)

    def is_valid(self, data: Any) -> bool:
        """True when ``data`` has the envelope structure (no algorithm check)."""
        try:
            _load(data)
        except MalformedEnvelope:
            return False
        return True

    def is_decryptable(self, data: Any) -> bool:
        """True when ``data`` passes every check ``parse`` performs."""
        try:
            self.parse(data)
        except EncryptionError:
            return False
        return True
