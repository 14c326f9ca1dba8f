"""
Key Derivation — per-field subkeys from versioned master keys.

The subkey for a field is derived from the master key of a given version
and the canonical context ``"{record_type}:{field_name}:{record_identifier}"``
using the provider's KDF, optionally personalized for domain separation
between deployments. Derivation is deterministic: decryption re-derives
the subkey instead of storing it.

Security Note:
    Subkeys live in ``bytearray`` buffers that are zeroed on ``wipe()``.
    Copies made by the underlying crypto libraries cannot be wiped.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Optional
from collections.abc import Iterator

from cryptography.hazmat.primitives import hashes

from ..exceptions import EncryptionError, UnknownKeyVersion
from .cache import CacheKey, RequestKeyCache, active_cache
from .config import DEFAULT_PERSONALIZATION, MasterKeyRing, check_personalization
from .context import EncryptionContext
from .providers import AEADProvider

logger = logging.getLogger("navigator.fieldcrypt")


class DerivedSubkey:
    """Transient key material bound to one (algorithm, version, context)."""

    __slots__ = ("algorithm", "key_version", "_buffer", "_wiped")

    def __init__(self, material: bytes, algorithm: str, key_version: str) -> None:
        self.algorithm = algorithm
        self.key_version = key_version
        self._buffer = bytearray(material)
        self._wiped = False

    @property
    def material(self) -> bytearray:
        if self._wiped:
            raise EncryptionError(
                "Derived subkey already wiped",
                key_version=self.key_version,
                algorithm=self.algorithm,
            )
        return self._buffer

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        """Zero the key buffer (best effort)."""
        if not self._wiped:
            self._buffer[:] = bytes(len(self._buffer))
            self._wiped = True

    def __len__(self) -> int:
        return len(self._buffer)

    def __enter__(self) -> "DerivedSubkey":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return (
            f"<DerivedSubkey algorithm={self.algorithm} "
            f"key_version={self.key_version} wiped={self._wiped}>"
        )


class DerivationCounter:
    """Thread-safe count of real (uncached) derivations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0


class KeyDerivation:
    """Derives field subkeys from a master key ring."""

    def __init__(
        self,
        key_ring: MasterKeyRing,
        personalization: str = DEFAULT_PERSONALIZATION,
        counter: Optional[DerivationCounter] = None,
    ) -> None:
        self._key_ring = key_ring
        self._personal = check_personalization(personalization)
        self.counter = counter or DerivationCounter()

    @property
    def key_ring(self) -> MasterKeyRing:
        return self._key_ring

    def _master_key(self, version: str, context: EncryptionContext) -> bytes:
        try:
            return self._key_ring.get(version)
        except UnknownKeyVersion as err:
            raise UnknownKeyVersion(
                err.message, key_version=version, **context.metadata()
            ) from None

    def fingerprint(self, key_version: str, context: EncryptionContext) -> str:
        """One-way digest of the master key and personalization.

        Identifies the key material behind a version label, so one cache
        shared by differently configured managers never mixes subkeys.
        """
        digest = hashes.Hash(hashes.SHA256())
        digest.update(self._personal)
        digest.update(self._master_key(key_version, context))
        return digest.finalize()[:16].hex()

    def cache_key(
        self,
        provider: AEADProvider,
        context: EncryptionContext,
        key_version: str,
    ) -> CacheKey:
        return (
            provider.algorithm,
            key_version,
            self.fingerprint(key_version, context),
            context.canonical(),
        )

    def derive(
        self,
        provider: AEADProvider,
        context: EncryptionContext,
        key_version: Optional[str] = None,
    ) -> DerivedSubkey:
        """Derive a fresh subkey. The caller owns it and must wipe it.

        Raises:
            UnknownKeyVersion: if ``key_version`` is not in the ring.
        """
        version = key_version or self._key_ring.current_version
        master_key = self._master_key(version, context)
        self.counter.increment()
        raw = provider.derive_key(
            master_key, context.canonical_bytes(), self._personal
        )
        if len(raw) != provider.required_key_length():
            raise EncryptionError(
                "Derived subkey has the wrong length",
                algorithm=provider.algorithm,
                key_version=version,
            )
        logger.debug(
            "Derived subkey for %s.%s (version=%s, algorithm=%s)",
            context.record_type, context.field_name, version, provider.algorithm,
        )
        return DerivedSubkey(raw, provider.algorithm, version)

    @contextmanager
    def subkey(
        self,
        provider: AEADProvider,
        context: EncryptionContext,
        key_version: Optional[str] = None,
        cache: Optional[RequestKeyCache] = None,
    ) -> Iterator[DerivedSubkey]:
        """Yield a subkey, from ``cache`` (or the active request cache) when set.

        Uncached subkeys are wiped when the block exits; cached ones are
        wiped when their cache scope ends.
        """
        version = key_version or self._key_ring.current_version
        cache = cache if cache is not None else active_cache()
        if cache is not None:
            yield cache.acquire(
                self.cache_key(provider, context, version),
                lambda: self.derive(provider, context, version),
            )
            return
        with self.derive(provider, context, version) as key:
            yield key
