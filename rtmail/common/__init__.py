"""Shared helpers (logging, request deadlines)."""
