"""Admin audit API"""

from .routes import router

__all__ = ["router"]
