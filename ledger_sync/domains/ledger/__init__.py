"""Local canonical ledger.

Persisted mirror of remote accounting data:
- ORM tables for credentials, vendors, accounts, products, invoices and bills
- LocalStore with transactional upsert, scope replacement and soft delete
"""
