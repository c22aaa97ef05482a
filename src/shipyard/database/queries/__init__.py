"""Database query functions for Shipyard.

Each module provides session-first async CRUD functions for one entity.
Functions flush but never commit; the caller owns the transaction
(``async with session.begin():``) so a request's writes land together.
"""
