"""Alembic migrations for the donorscope schema."""
