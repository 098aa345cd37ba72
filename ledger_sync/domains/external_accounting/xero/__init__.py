"""Xero transport and field mapping."""
