"""Optihub recording pipeline backend."""
