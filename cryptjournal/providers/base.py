"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from typing import Protocol, Sequence, runtime_checkable


# -----------------------------------------------------------------------------
# Encryption
# -----------------------------------------------------------------------------

@runtime_checkable
class EncryptionProvider(Protocol):
    """
    Encrypts plaintext for a set of recipients and decrypts it again.

    The journal never handles keys or ciphertext formats itself; it hands
    whole plaintext documents to the provider and stores what comes back.
    Decryption uses whatever identities the provider finds in its
    environment (for sops: ``SOPS_AGE_KEY_FILE`` and friends).

    Example implementation:
        class SopsEncryption:
            def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> bytes:
                return run(["sops", "--encrypt", "--age", ",".join(recipients), ...])

            def decrypt(self, ciphertext: bytes) -> bytes:
                return run(["sops", "--decrypt", ...])
    """

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> bytes:
        """
        Encrypt a plaintext document.

        Args:
            plaintext: Serialized document (YAML)
            recipients: Public recipient identifiers allowed to decrypt

        Returns:
            Authenticated ciphertext bytes

        Raises:
            EncryptionError: If encryption fails
        """
        ...

    def decrypt(self, ciphertext: bytes) -> bytes:
        """
        Decrypt a document produced by encrypt().

        Raises:
            DecryptionError: If no available identity can decrypt, or the
                ciphertext fails authentication
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the journal configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_encryption("sops", SopsEncryption)

        # Later, from config:
        provider = registry.create_encryption("sops", {"age_key_file": "~/.age/key.txt"})
    """

    def __init__(self):
        self._encryption_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load built-in provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Import provider modules to trigger registration
        from . import sops  # noqa: F401

    def register_encryption(self, name: str, provider_class: type) -> None:
        """Register an encryption provider class."""
        self._encryption_providers[name] = provider_class

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except TypeError as e:
            raise ValueError(
                f"Invalid parameters for {kind} provider '{name}': {e}"
            ) from e

    def create_encryption(self, name: str, params: dict | None = None) -> EncryptionProvider:
        """Create an encryption provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("encryption", name, self._encryption_providers, params)

    def list_encryption_providers(self) -> list[str]:
        """List registered encryption provider names."""
        self._ensure_providers_loaded()
        return list(self._encryption_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
