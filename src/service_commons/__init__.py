"""Shared configuration, logging, and error primitives for the marketplace agents."""
