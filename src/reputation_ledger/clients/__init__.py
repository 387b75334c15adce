"""Outbound clients for the Reputation Ledger."""
