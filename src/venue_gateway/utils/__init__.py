"""Shared utilities: logging setup and rate limiting."""
