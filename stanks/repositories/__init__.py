"""Data access layer repositories.

Each repository module provides async functions that take the caller's
``AsyncSession``; the service layer owns the transaction boundary.
"""
