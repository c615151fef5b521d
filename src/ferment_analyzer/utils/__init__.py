"""Shared helpers: constants, date math and gravity arithmetic."""
