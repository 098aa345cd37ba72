"""Platform-neutral types, parsing and reconciliation for accounting syncs."""
