"""Utility helpers for auto_quality."""
