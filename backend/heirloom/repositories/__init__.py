"""Data access helpers."""

from heirloom.repositories.vault_repository import VaultRepository

__all__ = ["VaultRepository"]
