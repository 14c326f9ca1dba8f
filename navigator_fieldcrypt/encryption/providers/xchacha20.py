"""
XChaCha20-Poly1305 provider.

Uses libsodium through PyNaCl. Preferred over AES-GCM when libsodium
exposes the IETF XChaCha20-Poly1305 construction.

    - 256-bit keys, 192-bit random nonces, 128-bit tags
    - keyed BLAKE2b(context, key=master_key, person=personalization)

The extended nonce makes random nonces safe for a practically unbounded
number of messages under one subkey.
"""
from typing import Optional

try:
    from nacl import bindings as sodium
    from nacl.encoding import RawEncoder
    from nacl.exceptions import CryptoError
    from nacl.hash import blake2b
    from nacl.utils import random as sodium_random
except ImportError:
    sodium = None

from ...exceptions import AuthenticationFailed
from .base import AEADProvider, EncryptResult


class XChaCha20Poly1305Provider(AEADProvider):
    algorithm = "xchacha20poly1305"
    priority = 100
    nonce_length = 24

    @classmethod
    def is_available(cls) -> bool:
        return sodium is not None and hasattr(
            sodium, "crypto_aead_xchacha20poly1305_ietf_encrypt"
        )

    def generate_nonce(self) -> bytes:
        return sodium_random(self.nonce_length)

    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptResult:
        self.validate_key(key)
        nonce = self.generate_nonce()
        sealed = sodium.crypto_aead_xchacha20poly1305_ietf_encrypt(
            bytes(plaintext), aad, nonce, bytes(key)
        )
        split = len(sealed) - self.auth_tag_length
        return EncryptResult(sealed[:split], nonce, sealed[split:])

    def decrypt(
        self,
        ciphertext: bytes,
        key: bytes,
        nonce: bytes,
        auth_tag: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        self.validate_key(key)
        try:
            return sodium.crypto_aead_xchacha20poly1305_ietf_decrypt(
                bytes(ciphertext) + bytes(auth_tag), aad, bytes(nonce), bytes(key)
            )
        except CryptoError:
            raise AuthenticationFailed(
                "Decryption failed - invalid key or corrupted data",
                algorithm=self.algorithm,
            ) from None

    def derive_key(
        self,
        master_key: bytes,
        context: bytes,
        personalization: bytes,
    ) -> bytes:
        self.validate_key(master_key, "Master key")
        return blake2b(
            context,
            digest_size=self.key_length,
            key=bytes(master_key),
            person=personalization,
            encoder=RawEncoder,
        )
