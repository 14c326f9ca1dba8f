"""AEAD providers shipped with FieldCrypt."""
from .base import AEADProvider, EncryptResult, ProviderDescriptor
from .aes_gcm import AESGCMProvider
from .xchacha20 import XChaCha20Poly1305Provider

__all__ = [
    "AEADProvider",
    "EncryptResult",
    "ProviderDescriptor",
    "AESGCMProvider",
    "XChaCha20Poly1305Provider",
]
