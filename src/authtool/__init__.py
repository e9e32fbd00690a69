"""Offline tooling for the encrypted auth-state artifact."""
