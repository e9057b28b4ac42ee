"""Routers package."""

from . import health
