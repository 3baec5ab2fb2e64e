"""Canonical-column CSV adapter."""

from .adapter import GenericAdapter

__all__ = ["GenericAdapter"]
