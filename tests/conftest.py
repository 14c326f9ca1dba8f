"""Shared fixtures for the FieldCrypt test-suite."""
import dataclasses
from typing import Optional

import pytest

from navigator_fieldcrypt.encryption import (
    EncryptionConfig,
    EncryptionContext,
    EncryptionManager,
    MasterKeyRing,
    StoredEnvelope,
    XChaCha20Poly1305Provider,
)

KEY_V1 = bytes(range(32))
KEY_V2 = bytes(range(32, 64))

XCHACHA = "xchacha20poly1305"
AES_GCM = "aes-256-gcm"

requires_xchacha = pytest.mark.skipif(
    not XChaCha20Poly1305Provider.is_available(),
    reason="libsodium without XChaCha20-Poly1305",
)


class MemoryEnvelopeStore:
    """In-memory EnvelopeStore with compare-and-swap replace."""

    def __init__(self):
        self.items: dict[str, StoredEnvelope] = {}
        self.replaced: list[str] = []

    def add(self, item_id: str, context: EncryptionContext, envelope: bytes, aad_fields=()):
        self.items[item_id] = StoredEnvelope(item_id, context, envelope, tuple(aad_fields))

    def scan(self, after: Optional[str], limit: int):
        ids = sorted(i for i in self.items if after is None or i > after)
        return [self.items[i] for i in ids[:limit]]

    def replace(self, item: StoredEnvelope, new_envelope: bytes) -> bool:
        current = self.items.get(item.item_id)
        if current is None or current.envelope != item.envelope:
            return False
        self.items[item.item_id] = dataclasses.replace(current, envelope=new_envelope)
        self.replaced.append(item.item_id)
        return True


@pytest.fixture
def key_ring():
    """Key ring holding only v1."""
    return MasterKeyRing(keys={"v1": KEY_V1}, current_version="v1")


@pytest.fixture
def rotated_ring(key_ring):
    """Key ring with v2 added as the current version, v1 kept for reads."""
    return key_ring.with_key("v2", KEY_V2, make_current=True)


@pytest.fixture
def config(key_ring):
    return EncryptionConfig(key_ring=key_ring)


@pytest.fixture
def manager(config):
    """Manager using the default (highest-priority) provider."""
    return EncryptionManager(config)


@pytest.fixture
def aes_manager(config):
    """Manager pinned to AES-256-GCM, available everywhere."""
    return EncryptionManager(config, algorithm=AES_GCM)


@pytest.fixture(params=[
    pytest.param(AES_GCM, id="aes-gcm"),
    pytest.param(XCHACHA, id="xchacha", marks=requires_xchacha),
])
def algorithm(request):
    """Every algorithm usable on this platform."""
    return request.param


@pytest.fixture
def pinned_manager(config, algorithm):
    """Manager pinned to each available algorithm in turn."""
    return EncryptionManager(config, algorithm=algorithm)


@pytest.fixture
def context():
    return EncryptionContext("User", "diary_entry", "u1")


@pytest.fixture
def store():
    return MemoryEnvelopeStore()
