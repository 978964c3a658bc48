"""Sample planning, reference generation, quality search and result selection."""
