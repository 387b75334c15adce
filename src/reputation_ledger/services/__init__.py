"""Reputation Ledger domain services."""
