"""
Database package initialization.

The package follows a modular structure:
- base: declarative base, mixins and column types
- connection: async engine and session management
- models: SQLAlchemy ORM models for all entities
"""

__all__ = []
