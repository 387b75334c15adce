"""Single-process wiring of all marketplace agents on one bus."""
