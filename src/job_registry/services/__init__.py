"""Job Registry domain services."""
