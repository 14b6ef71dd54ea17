"""
ItemDB Test Suite.

This package contains:
- unit/: Unit tests (stores, engine, archiver, configuration)
- integration/: Integration tests (full update path, concurrency, CLI)
"""
