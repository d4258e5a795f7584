"""Transparent encryption for stored content."""

from autoorganize.core.encryption.encryption_layer import EncryptionLayer

__all__ = ["EncryptionLayer"]
