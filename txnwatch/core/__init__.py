"""Process-wide settings and logging."""
