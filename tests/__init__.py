"""
ChipLedger Test Suite
=====================

Test Organization
-----------------
- tests/unit/          : Fast unit tests on the in-memory store (no external dependencies)
- tests/integration/   : SQLite-backed store tests, plus PostgreSQL/Redis via testcontainers

Testing Philosophy
------------------
- Unit tests: Fast, isolated, driven by a manual clock
- Integration tests: Slower, test real infrastructure interactions
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
