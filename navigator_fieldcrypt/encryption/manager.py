"""
EncryptionManager — encrypt and decrypt individual record fields.

Provides the public API of the engine:
- ``encrypt(plaintext, context, aad_fields)``: serialized envelope bytes
- ``decrypt(envelope, context, aad_fields)``: a ``ConcealedValue``
- ``reencrypt(envelope, context, aad_fields)``: move to the current key version
- ``validate_configuration()``: fail-fast startup check
- ``status()`` / ``benchmark()``: operational helpers

Each call runs through a fixed sequence of states; a failure in any state
aborts the whole operation. Errors are logged with context metadata only.

Security Note:
    Never log plaintext, master keys or subkeys. Only log record types,
    field names, algorithms and key versions.
"""
import time
import logging
from enum import Enum
from typing import Any, Optional, Union
from collections.abc import Sequence

from ..concealed import ConcealedValue
from ..exceptions import (
    ConfigurationError,
    EncryptionError,
    UnknownAlgorithm,
)
from .cache import RequestKeyCache, request_cache
from .config import EncryptionConfig, MasterKeyRing, check_personalization
from .context import EncryptionContext, build_aad
from .derivation import KeyDerivation
from .envelope import Envelope, EnvelopeCodec
from .providers import AEADProvider, XChaCha20Poly1305Provider
from .registry import ProviderRegistry

logger = logging.getLogger("navigator.fieldcrypt")

Plaintext = Union[str, bytes, bytearray, memoryview]
EnvelopeData = Union[str, bytes, bytearray, Envelope]


class OperationState(str, Enum):
    IDLE = "idle"
    PROVIDER_SELECTED = "provider_selected"
    ENVELOPE_PARSED = "envelope_parsed"
    PROVIDER_RESOLVED = "provider_resolved"
    KEY_DERIVED = "key_derived"
    CRYPTO_APPLIED = "crypto_applied"
    ENVELOPE_BUILT = "envelope_built"
    PLAINTEXT_WRAPPED = "plaintext_wrapped"


class _Operation:
    """State of a single encrypt/decrypt call.

    On failure, attaches context metadata to the error, converts unexpected
    library errors to ``EncryptionError`` and logs the state it stopped in.
    """

    def __init__(self, kind: str, context: EncryptionContext) -> None:
        self.kind = kind
        self.context = context
        self.state = OperationState.IDLE
        self.algorithm: Optional[str] = None
        self.key_version: Optional[str] = None

    def advance(self, state: OperationState) -> None:
        self.state = state

    def __enter__(self) -> "_Operation":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None or not isinstance(exc, Exception):
            return False
        logger.warning(
            "FieldCrypt %s aborted at %s: %s.%s (algorithm=%s, key_version=%s): %s",
            self.kind, self.state.value,
            self.context.record_type, self.context.field_name,
            self.algorithm, self.key_version, type(exc).__name__,
        )
        if isinstance(exc, EncryptionError):
            exc.record_type = exc.record_type or self.context.record_type
            exc.field_name = exc.field_name or self.context.field_name
            exc.algorithm = exc.algorithm or self.algorithm
            exc.key_version = exc.key_version or self.key_version
            return False
        raise EncryptionError(
            f"{self.kind.capitalize()} failed",
            record_type=self.context.record_type,
            field_name=self.context.field_name,
            algorithm=self.algorithm,
            key_version=self.key_version,
        ) from exc


def _to_bytes(plaintext: Plaintext) -> bytes:
    if isinstance(plaintext, str):
        return plaintext.encode("utf-8")
    if isinstance(plaintext, (bytes, bytearray, memoryview)):
        return bytes(plaintext)
    raise TypeError(
        f"Plaintext must be str or bytes, got {type(plaintext).__name__}"
    )


class EncryptionManager:
    """Field-level envelope encryption over a provider registry and key ring.

    The manager is immutable after construction and safe to share between
    threads. Key rotation builds a new manager with ``with_key_ring()``.
    """

    def __init__(
        self,
        config: EncryptionConfig,
        registry: Optional[ProviderRegistry] = None,
        algorithm: Optional[str] = None,
    ) -> None:
        self._config = config
        self._registry = (
            registry if registry is not None else ProviderRegistry.with_defaults()
        )
        self._algorithm = algorithm or config.default_algorithm
        self._derivation = KeyDerivation(config.key_ring, config.personalization)
        self._codec = EnvelopeCodec(self._registry)

    @classmethod
    def from_env(cls) -> "EncryptionManager":
        """Create a manager from FIELDCRYPT_* environment variables."""
        return cls(EncryptionConfig.from_env())

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EncryptionConfig:
        return self._config

    @property
    def key_ring(self) -> MasterKeyRing:
        return self._config.key_ring

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def codec(self) -> EnvelopeCodec:
        return self._codec

    @property
    def derivation_count(self) -> int:
        """Number of subkeys derived (cache hits are not counted)."""
        return self._derivation.counter.value

    def reset_derivation_count(self) -> None:
        self._derivation.counter.reset()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def provider(self, algorithm: Optional[str] = None) -> AEADProvider:
        """Resolve the provider: explicit pin, configured pin, then default.

        Raises:
            UnknownAlgorithm: if a pinned algorithm is not registered.
            NoProviderAvailable: if no usable provider can be found.
        """
        algorithm = algorithm or self._algorithm
        if algorithm:
            return self._registry.get_available(algorithm)
        return self._registry.default_provider()

    def validate_configuration(self) -> None:
        """Fail fast on an unusable configuration.

        Call once at startup when any encrypted field is declared.

        Raises:
            ConfigurationError: if no provider is available, the configured
                algorithm is not registered or unusable, the current key
                version is missing, or a key has the wrong length.
        """
        self.key_ring.validate_ring()
        check_personalization(self._config.personalization)
        try:
            provider = self.provider()
        except UnknownAlgorithm as err:
            raise ConfigurationError(
                "Configured algorithm is not registered", algorithm=err.algorithm
            ) from None
        if not XChaCha20Poly1305Provider.is_available():
            logger.warning(
                "XChaCha20-Poly1305 is unavailable; falling back to %s. "
                "Install PyNaCl with a libsodium that supports it.",
                provider.algorithm,
            )
        logger.info(
            "FieldCrypt configured: algorithm=%s, current key version=%s, "
            "key versions=%s",
            provider.algorithm, self.key_ring.current_version,
            self.key_ring.versions,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(
        self,
        plaintext: Plaintext,
        context: EncryptionContext,
        aad_fields: Sequence[str] = (),
        *,
        algorithm: Optional[str] = None,
        cache: Optional[RequestKeyCache] = None,
    ) -> bytes:
        """Encrypt a field value under the current key version.

        Args:
            plaintext: value to encrypt; ``str`` is encoded as UTF-8.
            context: what is being encrypted, plus the AAD value snapshot.
            aad_fields: names of the context AAD values to bind, in order.
                Empty binds every AAD value of the context.
            algorithm: pin a specific provider for this field.
            cache: explicit request key cache (else the active one, if any).

        Returns:
            Serialized envelope bytes.
        """
        data = _to_bytes(plaintext)
        with _Operation("encrypt", context) as op:
            provider = self.provider(algorithm)
            op.algorithm = provider.algorithm
            op.advance(OperationState.PROVIDER_SELECTED)
            aad = build_aad(context, aad_fields)
            version = op.key_version = self.key_ring.current_version
            with self._derivation.subkey(provider, context, version, cache) as subkey:
                op.advance(OperationState.KEY_DERIVED)
                result = provider.encrypt(data, subkey.material, aad)
            op.advance(OperationState.CRYPTO_APPLIED)
            envelope = Envelope(
                algorithm=provider.algorithm,
                key_version=version,
                nonce=result.nonce,
                ciphertext=result.ciphertext,
                auth_tag=result.auth_tag,
            )
            serialized = self._codec.serialize(envelope)
            op.advance(OperationState.ENVELOPE_BUILT)
        return serialized

    def decrypt(
        self,
        envelope: EnvelopeData,
        context: EncryptionContext,
        aad_fields: Sequence[str] = (),
        *,
        cache: Optional[RequestKeyCache] = None,
    ) -> ConcealedValue:
        """Decrypt an envelope written for ``context``.

        Raises:
            MalformedEnvelope / UnknownAlgorithm: the envelope cannot be parsed.
            UnknownKeyVersion: its key version is no longer in the ring.
            AuthenticationFailed: wrong context, AAD, key, or tampered data.
        """
        with _Operation("decrypt", context) as op:
            parsed = self.parse(envelope)
            op.algorithm = parsed.algorithm
            op.key_version = parsed.key_version
            op.advance(OperationState.ENVELOPE_PARSED)
            provider = self._registry.get_available(parsed.algorithm)
            op.advance(OperationState.PROVIDER_RESOLVED)
            aad = build_aad(context, aad_fields)
            with self._derivation.subkey(
                provider, context, parsed.key_version, cache
            ) as subkey:
                op.advance(OperationState.KEY_DERIVED)
                plaintext = provider.decrypt(
                    parsed.ciphertext,
                    subkey.material,
                    parsed.nonce,
                    parsed.auth_tag,
                    aad,
                )
            op.advance(OperationState.CRYPTO_APPLIED)
            value = ConcealedValue(plaintext, context)
            del plaintext
            op.advance(OperationState.PLAINTEXT_WRAPPED)
        return value

    def reencrypt(
        self,
        envelope: EnvelopeData,
        context: EncryptionContext,
        aad_fields: Sequence[str] = (),
        *,
        cache: Optional[RequestKeyCache] = None,
    ) -> bytes:
        """Decrypt under the embedded key version and encrypt under the current.

        The algorithm of the original envelope is kept; the nonce is fresh.
        """
        parsed = self.parse(envelope)
        value = self.decrypt(parsed, context, aad_fields, cache=cache)
        return value.reveal(
            lambda plaintext: self.encrypt(
                plaintext, context, aad_fields,
                algorithm=parsed.algorithm, cache=cache,
            )
        )

    def parse(self, envelope: EnvelopeData) -> Envelope:
        if isinstance(envelope, Envelope):
            return envelope
        return self._codec.parse(envelope)

    def needs_rotation(self, envelope: EnvelopeData) -> bool:
        """True when the envelope is not under the current key version."""
        return self.parse(envelope).key_version != self.key_ring.current_version

    def with_key_ring(self, key_ring: MasterKeyRing) -> "EncryptionManager":
        """New manager sharing registry and settings, using ``key_ring``."""
        return type(self)(
            self._config.with_key_ring(key_ring),
            registry=self._registry,
            algorithm=self._algorithm,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def encryption_info(self, algorithm: Optional[str] = None) -> dict[str, Any]:
        """Algorithm and sizes used for new encryptions (or ``algorithm``)."""
        provider = self.provider(algorithm)
        return {
            "algorithm": provider.algorithm,
            "key_size": provider.required_key_length(),
            "nonce_size": provider.required_nonce_length(),
            "tag_size": provider.required_tag_length(),
        }

    def status(self) -> dict[str, Any]:
        """Summary of providers and key versions. Contains no key material."""
        try:
            default_algorithm: Optional[str] = self.provider().algorithm
        except EncryptionError:
            default_algorithm = None
        return {
            "default_algorithm": default_algorithm,
            "available_algorithms": [p.algorithm for p in self._registry.available()],
            "registered_algorithms": self._registry.algorithms,
            "current_key_version": self.key_ring.current_version,
            "key_versions": self.key_ring.versions,
            "derivation_count": self.derivation_count,
        }

    def benchmark(
        self,
        iterations: int = 100,
        payload_size: int = 64,
    ) -> dict[str, dict[str, float]]:
        """Time encrypt+decrypt round-trips for every available provider.

        Subkeys are derived once per provider (a request cache is used), so
        the figures measure the AEAD and envelope work.
        """
        if iterations < 1:
            raise ValueError("iterations must be at least 1")
        payload = bytes(payload_size)
        context = EncryptionContext("Benchmark", "payload", "benchmark")
        results: dict[str, dict[str, float]] = {}
        for provider in self._registry.available():
            with request_cache() as cache:
                started = time.perf_counter()
                envelopes = [
                    self.encrypt(payload, context, algorithm=provider.algorithm, cache=cache)
                    for _ in range(iterations)
                ]
                encrypted = time.perf_counter()
                for item in envelopes:
                    self.decrypt(item, context, cache=cache).clear()
                finished = time.perf_counter()
            total = finished - started
            results[provider.algorithm] = {
                "iterations": iterations,
                "encrypt_ms": round((encrypted - started) * 1000, 3),
                "decrypt_ms": round((finished - encrypted) * 1000, 3),
                "ops_per_second": round(iterations * 2 / total, 1) if total else 0.0,
            }
        return results
