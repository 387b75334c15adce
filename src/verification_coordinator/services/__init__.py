"""Verification Coordinator domain services."""
