"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import Numeric, Uuid

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money columns: two decimal places, returned as Decimal
MoneyType = Numeric(12, 2)

# Distances and coordinates
DistanceType = Numeric(8, 2)
CoordinateType = Numeric(10, 7)
