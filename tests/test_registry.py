"""
Tests for ProviderRegistry.

Tests cover:
- Registration and lookup
- Default provider selection by priority and registration order
- Unavailable providers
"""
import pytest

from navigator_fieldcrypt.exceptions import (
    ConfigurationError,
    NoProviderAvailable,
    UnknownAlgorithm,
)
from navigator_fieldcrypt.encryption import ProviderRegistry
from navigator_fieldcrypt.encryption.providers import (
    AESGCMProvider,
    XChaCha20Poly1305Provider,
)


class UnavailableProvider(AESGCMProvider):
    """Provider whose backend is missing."""
    algorithm = "unavailable-gcm"
    priority = 500

    @classmethod
    def is_available(cls) -> bool:
        return False


class SecondGCMProvider(AESGCMProvider):
    """Same priority as AES-GCM, registered later."""
    algorithm = "second-gcm"


class TestRegistration:
    """Tests for register/get."""

    def test_with_defaults(self):
        registry = ProviderRegistry.with_defaults()
        assert registry.algorithms == ["xchacha20poly1305", "aes-256-gcm"]
        assert len(registry) == 2
        assert "aes-256-gcm" in registry

    def test_get_returns_registered_provider(self):
        provider = AESGCMProvider()
        registry = ProviderRegistry([provider])
        assert registry.get("aes-256-gcm") is provider

    def test_get_unknown_algorithm(self):
        registry = ProviderRegistry.with_defaults()
        with pytest.raises(UnknownAlgorithm) as exc_info:
            registry.get("rot13")
        assert exc_info.value.algorithm == "rot13"

    def test_duplicate_registration(self):
        registry = ProviderRegistry([AESGCMProvider()])
        with pytest.raises(ConfigurationError):
            registry.register(AESGCMProvider())

    def test_empty_algorithm_id(self):
        class Nameless(AESGCMProvider):
            algorithm = ""

        with pytest.raises(ConfigurationError):
            ProviderRegistry([Nameless()])

    def test_descriptors(self):
        registry = ProviderRegistry([AESGCMProvider(), UnavailableProvider()])
        descriptors = {d.algorithm: d for d in registry.descriptors()}
        assert descriptors["aes-256-gcm"].available is True
        assert descriptors["unavailable-gcm"].available is False


class TestDefaultProvider:
    """Tests for default provider selection."""

    def test_highest_priority_available_wins(self):
        registry = ProviderRegistry([AESGCMProvider(), UnavailableProvider()])
        assert registry.default_provider().algorithm == "aes-256-gcm"

    def test_xchacha_preferred_when_available(self):
        if not XChaCha20Poly1305Provider.is_available():
            pytest.skip("libsodium without XChaCha20-Poly1305")
        registry = ProviderRegistry.with_defaults()
        assert registry.default_provider().algorithm == "xchacha20poly1305"

    def test_tie_goes_to_first_registered(self):
        registry = ProviderRegistry([SecondGCMProvider(), AESGCMProvider()])
        assert registry.default_provider().algorithm == "second-gcm"
        registry = ProviderRegistry([AESGCMProvider(), SecondGCMProvider()])
        assert registry.default_provider().algorithm == "aes-256-gcm"

    def test_no_provider_available(self):
        registry = ProviderRegistry([UnavailableProvider()])
        with pytest.raises(NoProviderAvailable):
            registry.default_provider()

    def test_empty_registry(self):
        with pytest.raises(NoProviderAvailable):
            ProviderRegistry().default_provider()

    def test_get_available_rejects_unusable_provider(self):
        registry = ProviderRegistry([UnavailableProvider()])
        assert registry.get("unavailable-gcm").algorithm == "unavailable-gcm"
        with pytest.raises(NoProviderAvailable):
            registry.get_available("unavailable-gcm")

    def test_available_list(self):
        registry = ProviderRegistry([UnavailableProvider(), AESGCMProvider()])
        assert [p.algorithm for p in registry.available()] == ["aes-256-gcm"]
