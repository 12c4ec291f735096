"""Utilities package - message templates."""
