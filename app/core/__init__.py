"""Core application primitives (settings, database, cache, errors)."""
