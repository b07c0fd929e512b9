"""Shared utilities: correlation IDs, logging setup and Vault access."""
