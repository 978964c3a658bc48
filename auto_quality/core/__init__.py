# Core functionality for auto_quality
