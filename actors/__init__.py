"""Operator-facing actors for the reminder engine."""
