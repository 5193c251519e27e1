"""Feature modules: users, ledger and ranking."""
