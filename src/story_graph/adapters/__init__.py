"""Concrete renderer, persistence, transport, and logging adapters."""
