"""
Multi-project Postgres table export service.
"""

__version__ = "0.1.0"
