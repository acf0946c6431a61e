"""Typer command-line actor."""
