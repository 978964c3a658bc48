"""System-level helpers: process execution, temp files, error types."""
