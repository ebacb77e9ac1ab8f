"""
SwitchDB Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (SQLite, command line)
- e2e/: End-to-end tests (DynamoDB Local)
"""
