# Core modules for auto_quality
