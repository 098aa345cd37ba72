"""Core application components.

This module provides the foundational components for the ledger sync service:
- Database engine and session management via SQLAlchemy
- Application settings and configuration
- Logging setup shared across domains
"""
