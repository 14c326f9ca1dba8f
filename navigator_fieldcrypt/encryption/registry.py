"""
Provider Registry — lookup and default selection of AEAD providers.

The default provider is the available one with the highest priority; ties
go to the provider registered first. The registry is populated once at
startup and only read afterwards.
"""
import logging
from typing import Optional

from ..exceptions import ConfigurationError, NoProviderAvailable, UnknownAlgorithm
from .providers import (
    AEADProvider,
    AESGCMProvider,
    ProviderDescriptor,
    XChaCha20Poly1305Provider,
)

logger = logging.getLogger("navigator.fieldcrypt")


class ProviderRegistry:
    """Registered AEAD providers, keyed by algorithm id in registration order."""

    def __init__(self, providers: Optional[list[AEADProvider]] = None) -> None:
        self._providers: dict[str, AEADProvider] = {}
        for provider in providers or ():
            self.register(provider)

    @classmethod
    def with_defaults(cls) -> "ProviderRegistry":
        """Registry holding XChaCha20-Poly1305 and AES-256-GCM."""
        return cls([XChaCha20Poly1305Provider(), AESGCMProvider()])

    def register(self, provider: AEADProvider) -> AEADProvider:
        """Register a provider.

        Raises:
            ConfigurationError: if the algorithm id is empty or already taken.
        """
        if not provider.algorithm:
            raise ConfigurationError(
                f"{type(provider).__name__} does not declare an algorithm id"
            )
        if provider.algorithm in self._providers:
            raise ConfigurationError(
                "Provider already registered", algorithm=provider.algorithm
            )
        self._providers[provider.algorithm] = provider
        logger.debug(
            "Registered provider %s (priority=%d, available=%s)",
            provider.algorithm, provider.priority, provider.is_available(),
        )
        return provider

    def get(self, algorithm: str) -> AEADProvider:
        """Return the provider registered for ``algorithm``.

        Raises:
            UnknownAlgorithm: if no provider carries this id.
        """
        try:
            return self._providers[algorithm]
        except (KeyError, TypeError):
            raise UnknownAlgorithm(
                "Unsupported algorithm", algorithm=str(algorithm)
            ) from None

    def get_available(self, algorithm: str) -> AEADProvider:
        """Like ``get`` but also require the provider's backend to be usable.

        Raises:
            UnknownAlgorithm: if the id is not registered.
            NoProviderAvailable: if the provider is registered but unusable.
        """
        provider = self.get(algorithm)
        if not provider.is_available():
            raise NoProviderAvailable(
                "Encryption provider is not available", algorithm=algorithm
            )
        return provider

    def available(self) -> list[AEADProvider]:
        return [p for p in self._providers.values() if p.is_available()]

    def default_provider(self) -> AEADProvider:
        """Highest-priority available provider.

        Raises:
            NoProviderAvailable: when none of the registered providers is usable.
        """
        candidates = self.available()
        if not candidates:
            raise NoProviderAvailable("No encryption provider available")
        # max() keeps the first of equal elements, i.e. registration order.
        return max(candidates, key=lambda p: p.priority)

    def descriptors(self) -> list[ProviderDescriptor]:
        return [p.descriptor() for p in self._providers.values()]

    @property
    def algorithms(self) -> list[str]:
        return list(self._providers.keys())

    def __contains__(self, algorithm: object) -> bool:
        return algorithm in self._providers

    def __len__(self) -> int:
        return len(self._providers)
