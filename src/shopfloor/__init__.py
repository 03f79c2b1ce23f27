"""Warehouse, requisition and production management core."""

__version__ = "1.0.0"
