"""Shared helpers for environment parsing and logging."""
