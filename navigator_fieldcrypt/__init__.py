"""Navigator FieldCrypt.

Field-level envelope encryption for records stored in key-value databases.
"""
from .version import (
    __title__,
    __description__,
    __version__,
    __author__,
    __author_email__,
    __license__,
)
from .exceptions import (
    EncryptionError,
    ConfigurationError,
    NoProviderAvailable,
    UnknownAlgorithm,
    MalformedEnvelope,
    UnknownKeyVersion,
    AuthenticationFailed,
    AlreadyCleared,
)
from .concealed import ConcealedValue, PLACEHOLDER
from .encryption import (
    EncryptionConfig,
    EncryptionContext,
    EncryptionManager,
    KeyRotator,
    MasterKeyRing,
    ProviderRegistry,
    generate_master_key,
    request_cache,
)
from .fields import EncryptedField
from .record import EncryptedRecord

__all__ = (
    "EncryptionError",
    "ConfigurationError",
    "NoProviderAvailable",
    "UnknownAlgorithm",
    "MalformedEnvelope",
    "UnknownKeyVersion",
    "AuthenticationFailed",
    "AlreadyCleared",
    "ConcealedValue",
    "PLACEHOLDER",
    "EncryptionConfig",
    "EncryptionContext",
    "EncryptionManager",
    "KeyRotator",
    "MasterKeyRing",
    "ProviderRegistry",
    "generate_master_key",
    "request_cache",
    "EncryptedField",
    "EncryptedRecord",
)
