"""QuickBooks Online transport and field mapping."""
