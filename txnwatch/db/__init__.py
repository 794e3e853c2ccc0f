"""Persistence: engine, models, repositories and unit of work."""
