"""Linode provider implementation."""

from .compute import Compute

__all__ = [
    "Compute",
]
