"""
AES-256-GCM provider.

Uses ``cryptography``'s AESGCM and HKDF-SHA256. Always available; acts as
the fallback when XChaCha20-Poly1305 cannot be used.

    - 256-bit keys, 96-bit random nonces, 128-bit tags
    - HKDF-SHA256(master_key, salt, info=context:personalization)
"""
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ...exceptions import AuthenticationFailed
from .base import AEADProvider, EncryptResult

HKDF_SALT = b"NavigatorFieldCrypt"


class AESGCMProvider(AEADProvider):
    algorithm = "aes-256-gcm"
    priority = 50
    nonce_length = 12

    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptResult:
        self.validate_key(key)
        nonce = self.generate_nonce()
        sealed = AESGCM(bytes(key)).encrypt(nonce, plaintext, aad)
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
            return AESGCM(bytes(key)).decrypt(nonce, ciphertext + auth_tag, aad)
        except InvalidTag:
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
        personal = personalization.rstrip(b"\0")
        info = context + b":" + personal if personal else context
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=self.key_length,
            salt=HKDF_SALT,
            info=info,
        )
        return hkdf.derive(master_key)
