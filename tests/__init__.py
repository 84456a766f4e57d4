"""
Dataset Store Test Suite.

This package contains:
- unit/: Unit tests (families, model, pool, transactions, config)
- integration/: Integration tests (store operations and CLI on SQLite files)
"""
