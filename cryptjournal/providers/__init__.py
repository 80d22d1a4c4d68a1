"""Encryption providers."""

from .base import EncryptionProvider, ProviderRegistry, get_registry

__all__ = ["EncryptionProvider", "ProviderRegistry", "get_registry"]
