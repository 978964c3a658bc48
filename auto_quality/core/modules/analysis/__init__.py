"""Media probing, capability detection and quality target calculation."""
