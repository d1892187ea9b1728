"""Caller permission endpoints."""

from .routes import router

__all__ = ["router"]
