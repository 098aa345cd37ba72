"""Sync of external accounting platforms into the local ledger."""
