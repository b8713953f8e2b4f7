"""Database package for flashpractice.

This package provides the DuckDB storage layer behind the practice engine.
Only PracticeDatabase is exported as the public API.
"""

from .database import PracticeDatabase, utc_day_start

__all__ = ["PracticeDatabase", "utc_day_start"]
