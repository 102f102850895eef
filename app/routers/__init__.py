"""
API Routers
Separate router modules for each domain.
"""

from app.routers import analysis, services

__all__ = ["analysis", "services"]
