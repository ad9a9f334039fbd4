"""
polydb Test Suite.

This package contains:
- models.py: Sample models shared by the tests
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (SQLite files)
"""
