"""Domain layer: typed records, no I/O."""
