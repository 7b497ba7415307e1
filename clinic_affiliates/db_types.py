"""Database-agnostic type definitions for SQLAlchemy models.

Columns declared with these types work on both SQLite (local runs, tests)
and PostgreSQL (production).
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON everywhere else
JSONType = JSON().with_variant(JSONB(), "postgresql")
