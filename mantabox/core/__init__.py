"""Core utilities: errors, retry and logging."""
