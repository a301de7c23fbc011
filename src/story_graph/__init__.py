"""Incremental character relationship graph engine."""
