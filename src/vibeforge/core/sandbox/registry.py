"""
Provider registry.

Selects a provider instance by type with enablement and credential checks,
and keeps the process-wide default. All checks are local: nothing here
makes a network call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from vibeforge.core.config.models import VibeforgeConfig

from .models import ProviderInfo, ProviderType
from .provider import SandboxProvider, get_provider_class

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base exception for provider selection errors."""


class UnknownProvider(RegistryError):
    """No provider of this type is registered."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown sandbox provider: {provider}")


class ProviderDisabled(RegistryError):
    """The provider is registered but disabled in configuration."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Sandbox provider is disabled: {provider}")


class ProviderUnavailable(RegistryError):
    """The provider is enabled but its credentials are missing."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Sandbox provider is not available (missing credentials?): {provider}")


class DefaultProviderRequired(RegistryError):
    """The current default provider cannot be disabled."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Cannot disable the default sandbox provider: {provider}. Set another default first.")


def _key(provider_type: ProviderType | str) -> str:
    if isinstance(provider_type, ProviderType):
        return provider_type.value
    return str(provider_type).lower()


class ProviderRegistry:
    """
    Registry of provider instances.

    Example:
        registry = ProviderRegistry.from_config(load_config())
        provider = registry.get_default()
    """

    def __init__(
        self,
        providers: Iterable[SandboxProvider] = (),
        *,
        enabled: dict[str, bool] | None = None,
        default: ProviderType | str = ProviderType.DAYTONA,
    ) -> None:
        self._providers: dict[str, SandboxProvider] = {}
        self._enabled: dict[str, bool] = dict(enabled or {})
        self._default = _key(default)
        for provider in providers:
            self.register(provider)

    @classmethod
    def from_config(
        cls,
        config: VibeforgeConfig,
        *,
        sdk_overrides: dict[str, Any] | None = None,
    ) -> ProviderRegistry:
        """
        Build a registry holding the three standard providers.

        Args:
            config: Loaded configuration
            sdk_overrides: Optional SDK entry points per provider type

        Returns:
            ProviderRegistry with enablement and default from config
        """
        # Importing the provider modules registers their classes
        from . import daytona, e2b, modal  # noqa: F401

        overrides = sdk_overrides or {}
        providers: list[SandboxProvider] = []
        for provider_type in ProviderType:
            provider_class = get_provider_class(provider_type.value)
            if provider_class is None:
                continue
            providers.append(provider_class(config, sdk=overrides.get(provider_type.value)))

        enabled = {t.value: config.sandbox.is_enabled(t.value) for t in ProviderType}
        return cls(providers, enabled=enabled, default=config.sandbox.default_provider)

    def register(self, provider: SandboxProvider) -> None:
        """Register (or replace) the instance for its provider type."""
        key = _key(provider.type)
        self._providers[key] = provider
        self._enabled.setdefault(key, True)

    def _check(self, key: str) -> SandboxProvider:
        provider = self._providers.get(key)
        if provider is None:
            raise UnknownProvider(key)
        if not self._enabled.get(key, True):
            raise ProviderDisabled(key)
        if not provider.is_available():
            raise ProviderUnavailable(key)
        return provider

    def get(self, provider_type: ProviderType | str) -> SandboxProvider:
        """
        Get a usable provider.

        Raises:
            UnknownProvider: If no provider of that type is registered
            ProviderDisabled: If the provider is disabled
            ProviderUnavailable: If its credentials are missing
        """
        return self._check(_key(provider_type))

    def get_default(self) -> SandboxProvider:
        return self._check(self._default)

    @property
    def default(self) -> str:
        return self._default

    def set_default(self, provider_type: ProviderType | str) -> None:
        """
        Change the default provider.

        The provider is validated first; an unusable provider never becomes
        the default.
        """
        key = _key(provider_type)
        self._check(key)
        logger.info("Default sandbox provider set to %s", key)
        self._default = key

    def set_enabled(self, provider_type: ProviderType | str, enabled: bool) -> None:
        """
        Enable or disable a registered provider.

        Raises:
            UnknownProvider: If the type is not registered
            DefaultProviderRequired: If disabling the current default
        """
        key = _key(provider_type)
        if key not in self._providers:
            raise UnknownProvider(key)
        if not enabled and key == self._default:
            raise DefaultProviderRequired(key)
        self._enabled[key] = enabled

    def is_enabled(self, provider_type: ProviderType | str) -> bool:
        return self._enabled.get(_key(provider_type), True)

    def is_available(self, provider_type: ProviderType | str) -> bool:
        """Check whether get() would succeed for this type."""
        try:
            self._check(_key(provider_type))
        except RegistryError:
            return False
        return True

    def available(self) -> list[SandboxProvider]:
        """Providers that are enabled and have credentials, in registration order."""
        return [p for key, p in self._providers.items() if self.is_available(key)]

    def info(self) -> list[ProviderInfo]:
        """Capability discovery for UIs and the CLI."""
        return [
            ProviderInfo(
                type=provider.type,
                name=provider.name,
                available=provider.is_available(),
                enabled=self._enabled.get(key, True),
                is_default=key == self._default,
                capabilities=provider.capabilities,
            )
            for key, provider in self._providers.items()
        ]
