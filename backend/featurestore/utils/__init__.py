"""Async helpers."""
