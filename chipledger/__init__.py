"""
ChipLedger: chip balances, ledger history and rankings for a poker room.

Entry point for applications is `ApplicationContext`:

>>> from chipledger.core.infra.application_context import ApplicationContext
>>> context = ApplicationContext()
>>> await context.initialize()
>>> await context.container.ledger.apply_delta(user_id, 50, "add", "bonus", "staff@example.com")
"""

__version__ = "0.1.0"
