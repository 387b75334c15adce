"""Reputation Ledger agent: idempotent score aggregation and badge issuance."""
