"""Periodic trigger wiring for the reminder poll cycle."""
