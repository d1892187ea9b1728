"""Shared modules used across API routers."""
