"""Verification Coordinator agent: check pipeline, attestations, and weighted consensus."""
