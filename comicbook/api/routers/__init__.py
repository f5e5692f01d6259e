"""
API Routes Module
"""

from . import books, health, stages

__all__ = ["books", "health", "stages"]
