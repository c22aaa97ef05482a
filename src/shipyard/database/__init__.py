"""Database layer for Shipyard.

Contains the SQLAlchemy models, connection management, and the
session-first query functions used by the lifecycle engine.
"""
