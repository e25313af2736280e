"""
LinkStore Test Suite.

This package contains:
- unit/: Unit tests (temporary SQLite files, in-memory sidecars)
- integration/: Integration tests (HTTP surface, seeding CLI)
"""
