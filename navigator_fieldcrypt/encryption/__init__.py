"""FieldCrypt encryption engine — per-field envelope encryption.

Security Note (Threat Model):
    Master keys, derived subkeys and decrypted plaintext live in process
    memory while in use. Buffers owned by the engine are zeroed on a
    best-effort basis, but copies made by Python or by the crypto
    libraries cannot be wiped. A memory dump of the application process
    may expose them. This is an accepted limitation; mitigation requires
    HSM/secure enclave integration which is out of scope.
"""

from .cache import RequestKeyCache, request_cache, active_cache
from .config import (
    EncryptionConfig,
    MasterKeyRing,
    generate_master_key,
    load_master_keys,
)
from .context import EncryptionContext, build_aad
from .derivation import DerivedSubkey, KeyDerivation
from .envelope import Envelope, EnvelopeCodec
from .key_rotation import (
    EnvelopeStore,
    KeyRotator,
    RotationReport,
    StoredEnvelope,
)
from .manager import EncryptionManager
from .providers import (
    AEADProvider,
    AESGCMProvider,
    XChaCha20Poly1305Provider,
)
from .registry import ProviderRegistry

__all__ = [
    "AEADProvider",
    "AESGCMProvider",
    "XChaCha20Poly1305Provider",
    "ProviderRegistry",
    "EncryptionConfig",
    "MasterKeyRing",
    "generate_master_key",
    "load_master_keys",
    "EncryptionContext",
    "build_aad",
    "DerivedSubkey",
    "KeyDerivation",
    "RequestKeyCache",
    "request_cache",
    "active_cache",
    "Envelope",
    "EnvelopeCodec",
    "EncryptionManager",
    "EnvelopeStore",
    "KeyRotator",
    "RotationReport",
    "StoredEnvelope",
]
